"""
services/booking/hydration.py
Loads a booking together with its service, customer and agent and turns
it into the BookingWithRelations shape. A missing relation is an error.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from shared.models.models import Booking
from shared.policy.access import Viewer
from shared.schemas.schemas import BookingWithRelations
from shared.utils.errors import InternalError, NotFound

logger = logging.getLogger(__name__)

BOOKING_RELATIONS = (
    selectinload(Booking.service),
    selectinload(Booking.user),
    selectinload(Booking.agent),
)


async def load_booking(db: AsyncSession, booking_id: UUID) -> Booking:
    """Fresh read (bypasses the identity map) with all relations loaded."""
    result = await db.execute(
        select(Booking)
        .where(Booking.id == booking_id)
        .options(*BOOKING_RELATIONS)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    return booking


def hydrate(booking: Booking) -> BookingWithRelations:
    missing = [name for name in ("service", "user", "agent") if getattr(booking, name) is None]
    if missing:
        logger.error(f"Booking {booking.id} is missing relations: {', '.join(missing)}")
        raise InternalError("Booking references missing records")
    return BookingWithRelations.model_validate(booking)


def booking_view(booking: Booking, viewer: Viewer) -> dict:
    """Hydrated booking as JSON. The customer never sees agent_notes."""
    data = hydrate(booking).model_dump(mode="json")
    if viewer.id == booking.user_id and viewer.id != booking.agent_id and not viewer.is_admin:
        data.pop("agent_notes", None)
    return data
