"""
services/booking/router.py
Booking lifecycle: creation, listing, status changes through the state
machine, soft cancellation, reviews and bulk operations.
States: PENDING → CONFIRMED → COMPLETED, or → CANCELLED from PENDING/CONFIRMED
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, status
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from services.booking.bulk import apply_bulk, authorize_bulk, parse_bulk_request
from services.booking.hydration import BOOKING_RELATIONS, booking_view, load_booking
from services.booking.state_machine import (
    TERMINAL_STATES,
    apply_changes,
    field_diff,
    parse_status,
    plan_update,
    transition_values,
)
from services.notification.dispatcher import NotificationDispatcher, booking_payload, get_notifier
from shared.middleware.auth import get_current_user
from shared.models.models import (
    AuditAction,
    Booking,
    BookingStatus,
    PaymentStatus,
    Service,
    User,
    UserRole,
)
from shared.policy.access import Action, Viewer, ensure_access
from shared.schemas.schemas import (
    BookingBulkRequest,
    BookingCreateRequest,
    BookingDashboardResponse,
    BookingReviewRequest,
    BookingUpdateRequest,
    StatusBucket,
)
from shared.utils.audit import append_audit
from shared.utils.errors import Conflict, Forbidden, NotFound, ValidationFailed
from shared.utils.pagination import ListParams, paginate
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

BOOKING_SORT_FIELDS = {"created_at", "updated_at", "scheduled_date", "status", "total_amount"}


# ── Creation ──────────────────────────────────────────────────

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_booking(
    data: BookingCreateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """
    Book an active service. The agent is copied from the service and the
    amount from its price. New bookings start PENDING with payment PENDING.
    """
    viewer = Viewer.from_user(current_user)
    service = await db.get(Service, data.service_id)
    if not service or not service.is_active:
        raise NotFound("Service not found")
    if service.agent_id == current_user.id:
        raise ValidationFailed("You cannot book your own service")

    now = datetime.now(timezone.utc)
    booking = Booking(
        user_id=current_user.id,
        service_id=service.id,
        agent_id=service.agent_id,
        status=BookingStatus.PENDING,
        scheduled_date=data.scheduled_date,
        notes=data.notes,
        amount=service.price,
        total_amount=service.price,
        payment_status=PaymentStatus.PENDING,
        last_status_update=now,
    )
    db.add(booking)
    await db.commit()
    booking_id = booking.id
    logger.info(f"Booking {booking_id} created by {current_user.id} for service {service.id}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.BOOKING_CREATED,
        entity_type="Booking",
        entity_id=booking.id,
        details={"service_id": str(service.id), "total_amount": str(service.price)},
        request=request,
    )

    booking = await load_booking(db, booking_id)
    background_tasks.add_task(
        notifier.notify, "booking.created", booking_payload(booking, [booking.agent.email])
    )
    return ok(booking_view(booking, viewer), message="Booking created")


# ── Bulk ──────────────────────────────────────────────────────
# Registered before /{booking_id} so "bulk" is never parsed as an id.

@router.patch("/bulk")
async def bulk_update_bookings(
    data: BookingBulkRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Apply one action to many bookings.
    Actions: confirm, complete, cancel, delete, assign_agent, update_payment_status.
    """
    command = parse_bulk_request(data)
    viewer = Viewer.from_user(current_user)
    authorize_bulk(viewer, command)
    result = await apply_bulk(db, viewer, command, request=request)
    return ok(result)


# ── Read ──────────────────────────────────────────────────────

def _scoped(query, current_user: User):
    """Customers see their bookings, agents the bookings assigned to them, admins all."""
    if current_user.role == UserRole.USER:
        return query.where(Booking.user_id == current_user.id)
    if current_user.role == UserRole.AGENT:
        return query.where(Booking.agent_id == current_user.id)
    return query


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


@router.get("/dashboard")
async def booking_dashboard(
    since: datetime | None = Query(None, description="Only bookings changed at or after this time"),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Count and amount per status over the bookings the caller can list."""
    query = _scoped(
        select(Booking.status, func.count(Booking.id), func.sum(Booking.total_amount)),
        current_user,
    )
    if since:
        query = query.where(or_(Booking.updated_at >= since, Booking.last_status_update >= since))
    rows = (await db.execute(query.group_by(Booking.status))).all()

    by_status = {s.value: StatusBucket() for s in BookingStatus}
    for booking_status, count, amount in rows:
        by_status[BookingStatus(booking_status).value] = StatusBucket(count=count, total_amount=_money(amount))

    dashboard = BookingDashboardResponse(
        by_status=by_status,
        total=sum(b.count for b in by_status.values()),
        total_amount=_money(sum(b.total_amount for b in by_status.values())),
        earnings=by_status[BookingStatus.COMPLETED.value].total_amount,
        timestamp=datetime.now(timezone.utc),
    )
    if current_user.role == UserRole.AGENT:
        dashboard.total_services = await db.scalar(
            select(func.count(Service.id)).where(Service.agent_id == current_user.id)
        ) or 0
        dashboard.active_services = await db.scalar(
            select(func.count(Service.id)).where(
                Service.agent_id == current_user.id, Service.is_active == True
            )
        ) or 0

    logger.info(f"Booking dashboard for {current_user.id}: total={dashboard.total}")
    return ok(dashboard.model_dump(mode="json"))


@router.get("")
async def list_bookings(
    status_filter: str | None = Query(None, alias="status"),
    params: ListParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Role-scoped list with status and search filters."""
    viewer = Viewer.from_user(current_user)
    query = _scoped(select(Booking), current_user)

    if status_filter:
        query = query.where(Booking.status == parse_status(status_filter))

    if params.search:
        pattern = f"%{params.search}%"
        query = query.join(Service, Service.id == Booking.service_id).where(
            or_(Service.title.ilike(pattern), Booking.notes.ilike(pattern))
        )

    query = query.order_by(params.order_by(Booking, BOOKING_SORT_FIELDS))
    bookings, pagination = await paginate(db, query, params, options=BOOKING_RELATIONS)
    return ok([booking_view(b, viewer) for b in bookings], pagination=pagination)


@router.get("/{booking_id}")
async def get_booking(
    booking_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Customer, assigned agent or admin-tier only."""
    booking = await load_booking(db, booking_id)
    viewer = Viewer.from_user(current_user)
    ensure_access(viewer, Action.READ, booking, "Not authorized to view this booking")
    return ok(booking_view(booking, viewer))


# ── Update ────────────────────────────────────────────────────

@router.patch("/{booking_id}")
async def update_booking(
    booking_id: UUID,
    data: BookingUpdateRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """
    Status goes through the state machine. Notes, agent notes, schedule and
    amounts are limited to the parties that own them. Re-sending the current
    values writes nothing and logs nothing.
    """
    booking = await load_booking(db, booking_id)
    viewer = Viewer.from_user(current_user)
    ensure_access(viewer, Action.UPDATE, booking, "Not authorized to update this booking")

    changes = plan_update(booking, viewer, data)
    if not changes:
        return ok(booking_view(booking, viewer), message="No changes")

    diff = field_diff(booking, changes)
    await apply_changes(db, booking, changes)
    logger.info(f"Booking {booking.id} updated by {current_user.id}: {sorted(changes)}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.BOOKING_UPDATED,
        entity_type="Booking",
        entity_id=booking.id,
        details={"changes": diff},
        request=request,
    )

    booking = await load_booking(db, booking_id)
    if "status" in changes:
        background_tasks.add_task(
            notifier.notify,
            "booking.status_changed",
            booking_payload(booking, [booking.user.email], previous_status=diff["status"]["before"]),
        )
    return ok(booking_view(booking, viewer), message="Booking updated")


@router.delete("/{booking_id}")
async def cancel_booking(
    booking_id: UUID,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """
    Soft delete: the booking moves to CANCELLED and stays on record.
    Only admins can cancel a booking that already completed.
    """
    booking = await load_booking(db, booking_id)
    viewer = Viewer.from_user(current_user)
    ensure_access(viewer, Action.DELETE, booking, "Not authorized to cancel this booking")

    if booking.status == BookingStatus.CANCELLED:
        if viewer.is_admin:
            return ok(booking_view(booking, viewer), message="Booking already cancelled")
        raise ValidationFailed("Booking cannot be cancelled")
    if booking.status in TERMINAL_STATES and not viewer.is_admin:
        raise ValidationFailed("Booking cannot be cancelled")

    changes = transition_values(BookingStatus.CANCELLED)
    diff = field_diff(booking, changes)
    await apply_changes(db, booking, changes)
    logger.info(f"Booking {booking.id} cancelled by {current_user.id}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.BOOKING_CANCELLED,
        entity_type="Booking",
        entity_id=booking.id,
        details={"changes": diff},
        request=request,
    )

    booking = await load_booking(db, booking_id)
    recipients = [p.email for p in (booking.user, booking.agent) if p.id != viewer.id]
    background_tasks.add_task(
        notifier.notify, "booking.cancelled", booking_payload(booking, recipients)
    )
    return ok(booking_view(booking, viewer), message="Booking cancelled")


# ── Review ────────────────────────────────────────────────────

@router.post("/{booking_id}/review")
async def review_booking(
    booking_id: UUID,
    data: BookingReviewRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: NotificationDispatcher = Depends(get_notifier),
):
    """The customer rates a completed booking once."""
    viewer = Viewer.from_user(current_user)
    booking = await load_booking(db, booking_id)
    if booking.user_id != current_user.id:
        raise Forbidden("Only the customer can review this booking")
    if booking.status != BookingStatus.COMPLETED:
        raise ValidationFailed("Only completed bookings can be reviewed")
    if booking.rating is not None:
        raise ValidationFailed("Booking has already been reviewed")

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.rating.is_(None))
        .values(rating=data.rating, review=data.review)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        await db.rollback()
        raise Conflict("Booking has already been reviewed")
    await db.commit()

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.BOOKING_REVIEWED,
        entity_type="Booking",
        entity_id=booking.id,
        details={"rating": data.rating},
        request=request,
    )

    booking = await load_booking(db, booking_id)
    background_tasks.add_task(
        notifier.notify,
        "booking.reviewed",
        booking_payload(booking, [booking.agent.email], rating=data.rating),
    )
    return ok(booking_view(booking, viewer), message="Review submitted")
