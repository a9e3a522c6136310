"""
services/support/router.py
Support tickets: any account can raise one and reply to it; admin staff
see every ticket, triage status and priority, and answer.
A ticket that the caller may not read is reported as not found.
"""

import logging
from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from config.database import get_db
from shared.middleware.auth import get_current_user
from shared.models.models import (
    AuditAction,
    SupportTicket,
    TicketCategory,
    TicketPriority,
    TicketResponse,
    TicketStatus,
    User,
)
from shared.policy.access import Action, Viewer, can_access
from shared.schemas.schemas import (
    TicketCreateRequest,
    TicketDetail,
    TicketReplyRequest,
    TicketReplyResponse,
    TicketSummary,
    TicketUpdateRequest,
)
from shared.utils.audit import append_audit
from shared.utils.errors import Forbidden, NotFound, ValidationFailed
from shared.utils.pagination import ListParams, paginate
from shared.utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/support/tickets", tags=["Support"])

TICKET_SORT_FIELDS = {"created_at", "updated_at", "status", "priority"}


# ── Helpers ───────────────────────────────────────────────────

async def _load_ticket(db: AsyncSession, ticket_id: UUID) -> SupportTicket:
    result = await db.execute(
        select(SupportTicket)
        .where(SupportTicket.id == ticket_id)
        .options(selectinload(SupportTicket.responses).selectinload(TicketResponse.author))
        .execution_options(populate_existing=True)
    )
    ticket = result.scalar_one_or_none()
    if not ticket:
        raise NotFound("Ticket not found")
    return ticket


def _visible_ticket(ticket: SupportTicket, viewer: Viewer, action: Action) -> SupportTicket:
    if not can_access(viewer, action, ticket):
        raise NotFound("Ticket not found")
    return ticket


def _detail(ticket: SupportTicket) -> dict:
    return TicketDetail.model_validate(ticket).model_dump(mode="json")


# ── Create / List ─────────────────────────────────────────────

@router.post("", status_code=status.HTTP_201_CREATED)
async def create_ticket(
    data: TicketCreateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = SupportTicket(
        user_id=current_user.id,
        subject=data.subject.strip(),
        description=data.description.strip(),
        category=TicketCategory(data.category),
        priority=TicketPriority(data.priority),
        status=TicketStatus.OPEN,
    )
    db.add(ticket)
    await db.commit()
    ticket_id = ticket.id
    logger.info(f"Support ticket {ticket_id} opened by {current_user.id}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.TICKET_CREATED,
        entity_type="SupportTicket",
        entity_id=ticket_id,
        details={"subject": data.subject, "priority": TicketPriority(data.priority).value},
        request=request,
    )
    return ok(_detail(await _load_ticket(db, ticket_id)), message="Support ticket created")


@router.get("")
async def list_tickets(
    status_filter: Optional[TicketStatus] = Query(None, alias="status"),
    category: Optional[TicketCategory] = Query(None),
    priority: Optional[TicketPriority] = Query(None),
    user_id: Optional[UUID] = Query(None, description="Admins only"),
    params: ListParams = Depends(),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Own tickets for everyone; admins see all and may filter by owner."""
    viewer = Viewer.from_user(current_user)
    query = select(SupportTicket)
    if not viewer.is_admin:
        query = query.where(SupportTicket.user_id == current_user.id)
    elif user_id:
        query = query.where(SupportTicket.user_id == user_id)

    if status_filter:
        query = query.where(SupportTicket.status == status_filter)
    if category:
        query = query.where(SupportTicket.category == category)
    if priority:
        query = query.where(SupportTicket.priority == priority)
    if params.search:
        query = query.where(SupportTicket.subject.ilike(f"%{params.search}%"))

    query = query.order_by(params.order_by(SupportTicket, TICKET_SORT_FIELDS))
    tickets, pagination = await paginate(db, query, params)
    return ok(
        [TicketSummary.model_validate(t).model_dump(mode="json") for t in tickets],
        pagination=pagination,
    )


# ── Read / Update ─────────────────────────────────────────────

@router.get("/{ticket_id}")
async def get_ticket(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = await _load_ticket(db, ticket_id)
    _visible_ticket(ticket, Viewer.from_user(current_user), Action.READ)
    return ok(_detail(ticket))


@router.patch("/{ticket_id}")
async def update_ticket(
    ticket_id: UUID,
    data: TicketUpdateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Staff set any status and the priority. The owner can only close the
    ticket.
    """
    viewer = Viewer.from_user(current_user)
    ticket = _visible_ticket(await _load_ticket(db, ticket_id), viewer, Action.UPDATE)

    changes = {}
    if data.status is not None and TicketStatus(data.status) != ticket.status:
        new_status = TicketStatus(data.status)
        if not viewer.is_admin and new_status != TicketStatus.CLOSED:
            raise Forbidden("Only staff can change the ticket status")
        changes["status"] = new_status
    if data.priority is not None and TicketPriority(data.priority) != ticket.priority:
        if not viewer.is_admin:
            raise Forbidden("Only staff can change the ticket priority")
        changes["priority"] = TicketPriority(data.priority)

    if not changes:
        return ok(_detail(ticket), message="No changes")

    diff = {
        field: {"before": getattr(ticket, field).value, "after": value.value}
        for field, value in changes.items()
    }
    for field, value in changes.items():
        setattr(ticket, field, value)
    await db.commit()
    logger.info(f"Support ticket {ticket_id} updated by {current_user.id}: {list(changes)}")

    await append_audit(
        db,
        actor_id=current_user.id,
        action=AuditAction.TICKET_UPDATED,
        entity_type="SupportTicket",
        entity_id=ticket_id,
        details={"changes": diff},
        request=request,
    )
    return ok(_detail(await _load_ticket(db, ticket_id)), message="Ticket updated")


# ── Responses ─────────────────────────────────────────────────

@router.get("/{ticket_id}/responses")
async def list_responses(
    ticket_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ticket = _visible_ticket(await _load_ticket(db, ticket_id), Viewer.from_user(current_user), Action.READ)
    return ok([TicketReplyResponse.model_validate(r).model_dump(mode="json") for r in ticket.responses])


@router.post("/{ticket_id}/responses", status_code=status.HTTP_201_CREATED)
async def add_response(
    ticket_id: UUID,
    data: TicketReplyRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replies from admin staff on someone else's ticket are flagged is_staff."""
    viewer = Viewer.from_user(current_user)
    ticket = _visible_ticket(await _load_ticket(db, ticket_id), viewer, Action.UPDATE)
    if ticket.status == TicketStatus.CLOSED:
        raise ValidationFailed("Ticket is closed")

    message = data.message.strip()
    if not message:
        raise ValidationFailed("Message is required")

    now = datetime.now(timezone.utc)
    reply = TicketResponse(
        ticket_id=ticket.id,
        user_id=current_user.id,
        message=message,
        is_staff=viewer.is_admin and viewer.id != ticket.user_id,
        created_at=now,
    )
    db.add(reply)
    ticket.updated_at = now
    await db.commit()
    reply_id = reply.id
    logger.info(f"Response {reply_id} added to ticket {ticket_id} by {current_user.id}")

    result = await db.execute(
        select(TicketResponse)
        .where(TicketResponse.id == reply_id)
        .options(selectinload(TicketResponse.author))
        .execution_options(populate_existing=True)
    )
    return ok(
        TicketReplyResponse.model_validate(result.scalar_one()).model_dump(mode="json"),
        message="Response added",
    )
