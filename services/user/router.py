"""
services/user/router.py
User profiles: own record, projected views of other users, profile and
settings updates, and soft deletion.
"""

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import AuditAction, Booking, User, UserRole
from shared.policy.access import Action, Viewer, ensure_access
from shared.policy.preferences import apply_patch, diff_settings, load_settings
from shared.policy.roles import parse_role
from shared.policy.visibility import full_record, project
from shared.schemas.schemas import UserSettingsPatch, UserUpdateRequest
from shared.utils.audit import append_audit
from shared.utils.errors import Forbidden, NotFound, ValidationFailed
from shared.utils.responses import ok
from shared.utils.security import hash_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["Users"])


# ── Helpers ───────────────────────────────────────────────────

async def _get_user_or_404(user_id: UUID, db: AsyncSession) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise NotFound("User not found")
    return user


async def _has_booking_between(db: AsyncSession, a: UUID, b: UUID) -> bool:
    """True when either user has booked the other as agent."""
    booking_id = await db.scalar(
        select(Booking.id)
        .where(
            or_(
                and_(Booking.user_id == a, Booking.agent_id == b),
                and_(Booking.user_id == b, Booking.agent_id == a),
            )
        )
        .limit(1)
    )
    return booking_id is not None


# ── Read ──────────────────────────────────────────────────────

@router.get("/me")
async def get_me(current_user: User = Depends(get_current_user)):
    """Return the currently authenticated user's profile."""
    return ok(full_record(current_user))


@router.get("/{user_id}")
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Fields depend on who is asking: the owner and admins get the full record,
    everyone else a projection governed by the target's privacy settings.
    """
    target = await _get_user_or_404(user_id, db)
    viewer = Viewer.from_user(current_user)
    if not target.is_active and not viewer.is_admin:
        raise NotFound("User not found")

    has_booking = False
    if viewer.id != target.id and not viewer.is_admin:
        has_booking = await _has_booking_between(db, viewer.id, target.id)
    return ok(project(target, viewer, has_booking=has_booking))


# ── Update ────────────────────────────────────────────────────

@router.patch("/{user_id}")
async def update_user(
    user_id: UUID,
    data: UserUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Self or a higher-ranked admin. Role changes follow the role assignment
    rules, is_active is admin-only, and the email address never changes.
    """
    target = await _get_user_or_404(user_id, db)
    viewer = Viewer.from_user(current_user)
    ensure_access(viewer, Action.UPDATE, target, "Not authorized to update this user")

    fields = data.model_dump(exclude_unset=True)
    changes: dict = {}

    if fields.get("role") is not None:
        new_role = parse_role(fields["role"])
        if new_role is None:
            raise ValidationFailed("Invalid role")
        if new_role != target.role:
            ensure_access(
                viewer, Action.ASSIGN_ROLE, target,
                "Not authorized to assign this role", new_role=new_role,
            )
            changes["role"] = {"before": UserRole(target.role).value, "after": new_role.value}
            target.role = new_role

    if fields.get("is_active") is not None and fields["is_active"] != target.is_active:
        if not viewer.is_admin or viewer.id == target.id:
            raise Forbidden("Only admins can change account status")
        changes["is_active"] = {"before": target.is_active, "after": fields["is_active"]}
        target.is_active = fields["is_active"]

    for field in ("name", "phone", "address"):
        if field in fields and fields[field] is not None and fields[field] != getattr(target, field):
            changes[field] = {"before": getattr(target, field), "after": fields[field]}
            setattr(target, field, fields[field])

    if fields.get("password"):
        target.password_hash = hash_password(fields["password"])
        changes["password"] = "changed"

    if not changes:
        return ok(full_record(target), message="No changes")

    await db.commit()
    await db.refresh(target)
    record = full_record(target)
    logger.info(f"User {target.id} updated by {current_user.id}: {sorted(changes)}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.USER_UPDATED,
        entity_type="User",
        entity_id=user_id,
        details={"changes": changes},
        request=request,
    )
    if "role" in changes:
        await append_audit(
            db,
            actor_id=current_user.id,
            action=AuditAction.ROLE_CHANGED,
            entity_type="User",
            entity_id=user_id,
            details=changes["role"],
            request=request,
        )
    return ok(record, message="User updated")


@router.patch("/{user_id}/settings")
async def update_user_settings(
    user_id: UUID,
    data: UserSettingsPatch,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Partial settings update. Sections and fields left out keep their values."""
    target = await _get_user_or_404(user_id, db)
    ensure_access(Viewer.from_user(current_user), Action.UPDATE, target, "Not authorized to update these settings")

    current = load_settings(target.settings)
    updated = apply_patch(current, data)
    changes = diff_settings(current, updated)
    if not changes:
        return ok(updated.model_dump(), message="No changes")

    target.settings = updated.model_dump()
    await db.commit()

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.SETTING_CHANGED,
        entity_type="User",
        entity_id=user_id,
        details={"changes": changes},
        request=request,
    )
    return ok(updated.model_dump(), message="Settings updated")


# ── Delete ────────────────────────────────────────────────────

@router.delete("/{user_id}")
async def delete_user(
    user_id: UUID,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Soft delete (is_active=false). Nobody can delete their own account."""
    if user_id == current_user.id:
        raise Forbidden("Cannot delete your own account")

    target = await _get_user_or_404(user_id, db)
    ensure_access(Viewer.from_user(current_user), Action.DELETE, target, "Not authorized to delete this user")

    if not target.is_active:
        return ok({"id": str(target.id), "is_active": False}, message="User already deactivated")

    target.is_active = False
    await db.commit()
    logger.info(f"User {target.id} deactivated by {current_user.id}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.USER_DELETED,
        entity_type="User",
        entity_id=target.id,
        details={"email": target.email, "role": UserRole(target.role).value},
        request=request,
    )
    return ok({"id": str(user_id), "is_active": False}, message="User deleted")
