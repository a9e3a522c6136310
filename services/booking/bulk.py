"""
services/booking/bulk.py
Applies one action to many bookings with a single UPDATE or DELETE.

Order of work for every request:
1. parse_bulk_request   - shape checks, no database access
2. authorize_bulk       - role checks
3. apply_bulk           - one batched write, commit, then the audit append
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from fastapi import Request
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from services.booking.state_machine import (
    allowed_sources,
    parse_payment_status,
    transition_values,
)
from shared.models.models import Booking, BookingStatus, PaymentStatus, User, UserRole
from shared.policy.access import Viewer
from shared.policy.roles import is_super_admin
from shared.schemas.schemas import BookingBulkRequest
from shared.utils.audit import append_audit
from shared.utils.errors import Forbidden, NotFound, ValidationFailed

logger = logging.getLogger(__name__)

STATUS_ACTIONS = {
    "confirm": BookingStatus.CONFIRMED,
    "complete": BookingStatus.COMPLETED,
    "cancel": BookingStatus.CANCELLED,
}
FIELD_ACTIONS = {"assign_agent", "update_payment_status"}
BULK_ACTIONS = frozenset(STATUS_ACTIONS) | FIELD_ACTIONS | {"delete"}


@dataclass(frozen=True)
class BulkCommand:
    action: str
    ids: tuple[UUID, ...]
    value: str | None = None


# ── Validation ────────────────────────────────────────────────

def parse_bulk_request(data: BookingBulkRequest) -> BulkCommand:
    if not data.action or not data.ids:
        raise ValidationFailed("Invalid request data")

    if data.action not in BULK_ACTIONS:
        raise ValidationFailed("Invalid action")

    value = data.value
    if data.action == "assign_agent":
        if not value:
            raise ValidationFailed("Agent ID is required for assignment")
        try:
            value = str(UUID(value))
        except ValueError:
            raise ValidationFailed("Invalid agent ID")

    if data.action == "update_payment_status":
        if not value:
            raise ValidationFailed("Payment status is required")
        value = parse_payment_status(value).value

    try:
        ids = tuple(dict.fromkeys(UUID(str(i)) for i in data.ids))
    except ValueError:
        raise ValidationFailed("Invalid booking ID")

    return BulkCommand(action=data.action, ids=ids, value=value)


# ── Authorization ─────────────────────────────────────────────

def authorize_bulk(viewer: Viewer, command: BulkCommand) -> None:
    """
    delete: SUPER_ADMIN. Field actions: admin-tier.
    Status actions: admin-tier on any row, AGENT on its own rows only.
    """
    if command.action == "delete":
        if not is_super_admin(viewer.role):
            raise Forbidden("Only super admins can delete bookings")
        return
    if command.action in FIELD_ACTIONS:
        if not viewer.is_admin:
            raise Forbidden("Only admins can perform this action")
        return
    if not (viewer.is_admin or viewer.role == UserRole.AGENT):
        raise Forbidden("Only agents and admins can change booking status")


# ── Execution ─────────────────────────────────────────────────

def _update_statement(viewer: Viewer, command: BulkCommand):
    stmt = update(Booking).where(Booking.id.in_(command.ids))

    if command.action in STATUS_ACTIONS:
        target = STATUS_ACTIONS[command.action]
        stmt = stmt.where(Booking.status != target)
        if not viewer.is_admin:
            stmt = stmt.where(
                Booking.agent_id == viewer.id,
                Booking.status.in_(list(allowed_sources(target))),
            )
        return stmt.values(**transition_values(target, datetime.now(timezone.utc)))

    if command.action == "assign_agent":
        agent_id = UUID(command.value)
        return stmt.where(Booking.agent_id != agent_id).values(agent_id=agent_id)

    payment_status = PaymentStatus(command.value)
    return stmt.where(Booking.payment_status != payment_status).values(payment_status=payment_status)


async def _ensure_agent_exists(db: AsyncSession, agent_id: str) -> None:
    agent = await db.scalar(
        select(User).where(User.id == UUID(agent_id), User.role == UserRole.AGENT)
    )
    if not agent:
        raise NotFound("Agent not found")


async def apply_bulk(
    db: AsyncSession,
    viewer: Viewer,
    command: BulkCommand,
    request: Request | None = None,
) -> dict:
    """Returns {"deleted_count": n} for delete, {"updated_count": n} otherwise."""
    if command.action == "assign_agent":
        await _ensure_agent_exists(db, command.value)

    if command.action == "delete":
        stmt = delete(Booking).where(Booking.id.in_(command.ids))
        count_key = "deleted_count"
    else:
        stmt = _update_statement(viewer, command)
        count_key = "updated_count"

    result = await db.execute(stmt.execution_options(synchronize_session=False))
    count = result.rowcount
    await db.commit()

    logger.info(
        f"Bulk {command.action} on {len(command.ids)} bookings by {viewer.id}: {count_key}={count}"
    )

    await append_audit(
        db,
        actor_id=viewer.id,
        action=f"BOOKING_BULK_{command.action.upper()}",
        entity_type="Booking",
        details={
            "ids": [str(i) for i in command.ids],
            "value": command.value,
            count_key: count,
        },
        request=request,
    )
    return {count_key: count}
