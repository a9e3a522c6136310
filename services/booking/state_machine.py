"""
services/booking/state_machine.py
Booking status transitions and field-level update planning.

    PENDING ──► CONFIRMED ──► COMPLETED
       │            │
       └────────────┴──► CANCELLED

COMPLETED and CANCELLED are terminal. Admin-tier actors may move a
booking from any state to any state (corrective edits).
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import Booking, BookingStatus, PaymentStatus
from shared.policy.access import Action, Viewer, can_access
from shared.schemas.schemas import BookingUpdateRequest
from shared.utils.errors import Conflict, Forbidden, ValidationFailed

logger = logging.getLogger(__name__)

TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

STATUS_TIMESTAMPS = {
    BookingStatus.CONFIRMED: "confirmed_at",
    BookingStatus.COMPLETED: "completed_at",
    BookingStatus.CANCELLED: "cancelled_at",
}


# ── Parsing ───────────────────────────────────────────────────

def parse_status(value) -> BookingStatus:
    """Exact, case-sensitive match. "confirmed" is not a status."""
    if isinstance(value, BookingStatus):
        return value
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationFailed("Invalid status")


def parse_payment_status(value) -> PaymentStatus:
    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(value)
    except ValueError:
        raise ValidationFailed("Invalid payment status")


# ── Transitions ───────────────────────────────────────────────

def allowed_sources(target: BookingStatus) -> frozenset[BookingStatus]:
    """States from which a non-admin may move a booking into target."""
    return frozenset(s for s, targets in TRANSITIONS.items() if target in targets)


def check_transition(current: BookingStatus, new: BookingStatus, viewer: Viewer) -> None:
    if viewer.is_admin:
        return
    if new not in TRANSITIONS[BookingStatus(current)]:
        raise ValidationFailed("Invalid status")


def transition_values(new: BookingStatus, now: datetime | None = None) -> dict:
    """Column values written together with a status change."""
    now = now or datetime.now(timezone.utc)
    values = {"status": new, "last_status_update": now}
    stamp = STATUS_TIMESTAMPS.get(new)
    if stamp:
        values[stamp] = now
    return values


# ── Update planning ───────────────────────────────────────────

def plan_update(booking: Booking, viewer: Viewer, data: BookingUpdateRequest) -> dict:
    """
    Turn a PATCH body into the column values to write.
    Validation runs before any permission check; nothing is written here.
    Fields whose requested value equals the stored one are dropped, so a
    same-status request plans no change at all.
    """
    fields = data.model_dump(exclude_unset=True)
    changes: dict = {}

    new_status = parse_status(fields["status"]) if fields.get("status") is not None else None
    new_payment = (
        parse_payment_status(fields["payment_status"])
        if fields.get("payment_status") is not None
        else None
    )

    is_customer = viewer.id == booking.user_id
    is_agent = viewer.id == booking.agent_id

    if new_status is not None and new_status != booking.status:
        if not can_access(viewer, Action.UPDATE_STATUS, booking):
            raise Forbidden("Only the assigned agent or an admin can change the status")
        check_transition(booking.status, new_status, viewer)
        changes.update(transition_values(new_status))

    if "scheduled_date" in fields and fields["scheduled_date"] is not None:
        if not (is_agent or viewer.is_admin):
            raise Forbidden("Only the assigned agent or an admin can reschedule")
        if fields["scheduled_date"] != booking.scheduled_date:
            changes["scheduled_date"] = fields["scheduled_date"]

    if "notes" in fields and fields["notes"] != booking.notes:
        if not (is_customer or viewer.is_admin):
            raise Forbidden("Only the customer can edit booking notes")
        changes["notes"] = fields["notes"]

    if "agent_notes" in fields and fields["agent_notes"] != booking.agent_notes:
        if not (is_agent or viewer.is_admin):
            raise Forbidden("Only the assigned agent can edit agent notes")
        changes["agent_notes"] = fields["agent_notes"]

    if fields.get("total_amount") is not None and fields["total_amount"] != booking.total_amount:
        if not viewer.is_admin:
            raise Forbidden("Only admins can change the amount")
        changes["total_amount"] = fields["total_amount"]

    if new_payment is not None and new_payment != booking.payment_status:
        if not viewer.is_admin:
            raise Forbidden("Only admins can change the payment status")
        changes["payment_status"] = new_payment

    return changes


def _jsonable(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value


def field_diff(booking: Booking, changes: dict) -> dict:
    """{field: {"before": old, "after": new}} for the audit entry."""
    return {
        field: {"before": _jsonable(getattr(booking, field)), "after": _jsonable(value)}
        for field, value in changes.items()
    }


# ── Persistence ───────────────────────────────────────────────

async def apply_changes(db: AsyncSession, booking: Booking, changes: dict) -> None:
    """
    Write the planned values in one UPDATE and commit.
    A status change is conditional on the status read earlier; if another
    request moved the booking in between, nothing is written and Conflict
    is raised.
    """
    booking_id = booking.id
    stmt = update(Booking).where(Booking.id == booking_id)
    if "status" in changes:
        stmt = stmt.where(Booking.status == booking.status)
    result = await db.execute(stmt.values(**changes).execution_options(synchronize_session=False))
    if result.rowcount == 0:
        await db.rollback()
        logger.warning(f"Booking {booking_id} changed concurrently, update rejected")
        raise Conflict("Booking was modified by another request")
    await db.commit()
