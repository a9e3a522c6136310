"""
services/admin/router.py
Admin-only endpoints: user directory, bulk user moderation, platform
stats and the immutable audit log.

Every mutation is followed by an AuditLog entry.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import require_admin
from shared.models.models import (
    AuditLog,
    Booking,
    BookingStatus,
    PaymentStatus,
    Service,
    SupportTicket,
    TicketStatus,
    User,
    UserRole,
)
from shared.policy.roles import is_super_admin, parse_role
from shared.policy.visibility import full_record
from shared.schemas.schemas import AdminStatsResponse, AdminUserBulkRequest, AuditLogResponse
from shared.utils.audit import append_audit
from shared.utils.errors import ValidationFailed
from shared.utils.pagination import ListParams, paginate, pagination_meta
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

USER_SORT_FIELDS = {"created_at", "updated_at", "name", "email", "role", "last_login"}

# action -> (extra row filter, values written)
USER_BULK_ACTIONS = {
    "activate": (User.is_active == False, {"is_active": True}),
    "deactivate": (User.is_active == True, {"is_active": False}),
    "promote_to_agent": (User.role == UserRole.USER, {"role": UserRole.AGENT}),
    "demote_to_user": (User.role == UserRole.AGENT, {"role": UserRole.USER}),
}


# ── User directory ─────────────────────────────────────────────────────────────

@router.get("/users")
async def list_users(
    role: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None),
    params: ListParams = Depends(),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """search matches name and email, case-insensitive."""
    query = select(User)
    if role:
        parsed = parse_role(role)
        if parsed is None:
            raise ValidationFailed("Invalid role")
        query = query.where(User.role == parsed)
    if is_active is not None:
        query = query.where(User.is_active == is_active)
    if params.search:
        pattern = f"%{params.search}%"
        query = query.where(or_(User.name.ilike(pattern), User.email.ilike(pattern)))

    query = query.order_by(params.order_by(User, USER_SORT_FIELDS))
    users, pagination = await paginate(db, query, params)
    return ok([full_record(u) for u in users], pagination=pagination)


@router.patch("/users/bulk")
async def bulk_update_users(
    data: AdminUserBulkRequest,
    request: Request,
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    activate | deactivate | promote_to_agent | demote_to_user over user_ids.
    ADMIN can only touch USER and AGENT accounts; nobody can include themselves.
    """
    if not data.action or not data.user_ids:
        raise ValidationFailed("Invalid request data")
    if data.action not in USER_BULK_ACTIONS:
        raise ValidationFailed("Invalid action")
    try:
        ids = list(dict.fromkeys(UUID(i) for i in data.user_ids))
    except ValueError:
        raise ValidationFailed("Invalid user ID")
    if current_user.id in ids:
        raise ValidationFailed("Cannot modify your own account")

    row_filter, values = USER_BULK_ACTIONS[data.action]
    stmt = update(User).where(User.id.in_(ids), row_filter)
    if not is_super_admin(current_user.role):
        stmt = stmt.where(User.role.in_([UserRole.USER, UserRole.AGENT]))

    result = await db.execute(stmt.values(**values).execution_options(synchronize_session=False))
    count = result.rowcount
    await db.commit()
    logger.info(f"Bulk {data.action} on {len(ids)} users by {current_user.id}: updated_count={count}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=f"USER_BULK_{data.action.upper()}",
        entity_type="User",
        details={"ids": [str(i) for i in ids], "updated_count": count},
        request=request,
    )
    return ok({"updated_count": count})


# ── Stats ──────────────────────────────────────────────────────────────────────

def _system_health(pending_bookings: int, open_tickets: int) -> str:
    if pending_bookings > 100 or open_tickets > 50:
        return "critical"
    if pending_bookings > 50 or open_tickets > 20:
        return "warning"
    return "good"


@router.get("/stats")
async def get_stats(
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Platform-wide counts for the admin dashboard."""
    today_start = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    role_rows = await db.execute(select(User.role, func.count(User.id)).group_by(User.role))
    users_by_role = {role.value: 0 for role in UserRole}
    for role, count in role_rows.all():
        users_by_role[UserRole(role).value] = count

    total_services = await db.scalar(select(func.count(Service.id)))
    active_services = await db.scalar(
        select(func.count(Service.id)).where(Service.is_active == True)
    )
    total_bookings = await db.scalar(select(func.count(Booking.id)))
    pending_bookings = await db.scalar(
        select(func.count(Booking.id)).where(Booking.status == BookingStatus.PENDING)
    )
    bookings_today = await db.scalar(
        select(func.count(Booking.id)).where(Booking.created_at >= today_start)
    )
    total_revenue = await db.scalar(
        select(func.sum(Booking.total_amount)).where(Booking.payment_status == PaymentStatus.PAID)
    )
    open_tickets = await db.scalar(
        select(func.count(SupportTicket.id)).where(
            SupportTicket.status.in_([TicketStatus.OPEN, TicketStatus.IN_PROGRESS])
        )
    )

    stats = AdminStatsResponse(
        users_by_role=users_by_role,
        total_services=total_services or 0,
        active_services=active_services or 0,
        total_bookings=total_bookings or 0,
        pending_bookings=pending_bookings or 0,
        bookings_today=bookings_today or 0,
        total_revenue=Decimal(str(total_revenue or 0)).quantize(Decimal("0.01")),
        open_tickets=open_tickets or 0,
        system_health=_system_health(pending_bookings or 0, open_tickets or 0),
    )
    return ok(stats.model_dump(mode="json"))


# ── Audit Log ──────────────────────────────────────────────────────────────────

@router.get("/audit-logs")
async def get_audit_logs(
    action: Optional[str] = Query(None, description="Filter by action e.g. BOOKING_UPDATED"),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    user_id: Optional[UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Immutable audit log, newest first. Read-only."""
    query = select(AuditLog)
    if action:
        query = query.where(AuditLog.action == action.upper())
    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.where(AuditLog.entity_id == entity_id)
    if user_id:
        query = query.where(AuditLog.user_id == user_id)

    total = await db.scalar(select(func.count()).select_from(query.subquery()))
    result = await db.execute(
        query.order_by(AuditLog.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    entries = result.scalars().all()

    return ok(
        [AuditLogResponse.model_validate(e).model_dump(mode="json") for e in entries],
        pagination=pagination_meta(page, limit, total or 0),
    )
