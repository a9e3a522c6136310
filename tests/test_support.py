"""
tests/test_support.py
Support tickets: owner-only visibility, staff triage and replies.
"""

import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from shared.models.models import AuditLog, SupportTicket, TicketStatus
from tests.conftest import auth_headers

NEW_TICKET = {
    "subject": "Refund not received",
    "description": "Cancelled booking last week, refund still pending.",
    "category": "billing",
    "priority": "high",
}


async def _open_ticket(client: AsyncClient, owner) -> dict:
    response = await client.post("/support/tickets", json=NEW_TICKET, headers=auth_headers(owner))
    assert response.status_code == 201
    return response.json()["data"]


# ── Create / List ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_create_ticket(client: AsyncClient, user, session_factory):
    data = await _open_ticket(client, user)
    assert data["status"] == "open"
    assert data["priority"] == "high"
    assert data["category"] == "billing"
    assert data["user_id"] == str(user.id)
    assert data["responses"] == []

    async with session_factory() as session:
        entry = await session.scalar(select(AuditLog).where(AuditLog.entity_id == data["id"]))
    assert entry.action == "TICKET_CREATED"


@pytest.mark.asyncio
async def test_create_ticket_defaults(client: AsyncClient, user):
    response = await client.post(
        "/support/tickets",
        json={"subject": "Login trouble", "description": "Cannot sign in from mobile."},
        headers=auth_headers(user),
    )
    data = response.json()["data"]
    assert data["category"] == "other"
    assert data["priority"] == "medium"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {**NEW_TICKET, "subject": "Hi"},
        {**NEW_TICKET, "description": "Too short"},
        {**NEW_TICKET, "priority": "whenever"},
    ],
)
async def test_create_ticket_validation(client: AsyncClient, user, body):
    response = await client.post("/support/tickets", json=body, headers=auth_headers(user))
    assert response.status_code == 400
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_list_is_scoped_to_owner(client: AsyncClient, user, other_user, admin_user):
    mine = await _open_ticket(client, user)
    await _open_ticket(client, other_user)

    response = await client.get("/support/tickets", headers=auth_headers(user))
    assert [t["id"] for t in response.json()["data"]] == [mine["id"]]

    response = await client.get("/support/tickets", headers=auth_headers(admin_user))
    assert response.json()["pagination"]["total"] == 2

    response = await client.get(f"/support/tickets?user_id={user.id}", headers=auth_headers(admin_user))
    assert [t["id"] for t in response.json()["data"]] == [mine["id"]]


@pytest.mark.asyncio
async def test_list_filters(client: AsyncClient, user):
    await _open_ticket(client, user)
    response = await client.get("/support/tickets?status=closed", headers=auth_headers(user))
    assert response.json()["data"] == []
    response = await client.get("/support/tickets?category=billing", headers=auth_headers(user))
    assert len(response.json()["data"]) == 1


# ── Read / Update ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stranger_gets_not_found(client: AsyncClient, user, other_user, agent_user):
    ticket = await _open_ticket(client, user)
    for stranger in (other_user, agent_user):
        response = await client.get(f"/support/tickets/{ticket['id']}", headers=auth_headers(stranger))
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Ticket not found"}


@pytest.mark.asyncio
async def test_owner_can_close_but_not_triage(client: AsyncClient, user):
    ticket = await _open_ticket(client, user)
    url = f"/support/tickets/{ticket['id']}"

    response = await client.patch(url, json={"priority": "urgent"}, headers=auth_headers(user))
    assert response.status_code == 403
    response = await client.patch(url, json={"status": "resolved"}, headers=auth_headers(user))
    assert response.status_code == 403

    response = await client.patch(url, json={"status": "closed"}, headers=auth_headers(user))
    assert response.status_code == 200
    assert response.json()["data"]["status"] == "closed"


@pytest.mark.asyncio
async def test_staff_triage_is_audited(client: AsyncClient, user, admin_user, session_factory):
    ticket = await _open_ticket(client, user)
    response = await client.patch(
        f"/support/tickets/{ticket['id']}",
        json={"status": "in_progress", "priority": "urgent"},
        headers=auth_headers(admin_user),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert (data["status"], data["priority"]) == ("in_progress", "urgent")

    async with session_factory() as session:
        entry = await session.scalar(
            select(AuditLog).where(AuditLog.entity_id == ticket["id"], AuditLog.action == "TICKET_UPDATED")
        )
    assert entry.user_id == admin_user.id
    assert entry.details["changes"]["status"] == {"before": "open", "after": "in_progress"}


@pytest.mark.asyncio
async def test_unchanged_update_writes_nothing(client: AsyncClient, user, session_factory):
    ticket = await _open_ticket(client, user)
    response = await client.patch(
        f"/support/tickets/{ticket['id']}", json={"priority": "high"}, headers=auth_headers(user)
    )
    assert response.json()["message"] == "No changes"
    async with session_factory() as session:
        entry = await session.scalar(select(AuditLog).where(AuditLog.action == "TICKET_UPDATED"))
    assert entry is None


# ── Responses ──────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_conversation(client: AsyncClient, user, admin_user):
    ticket = await _open_ticket(client, user)
    url = f"/support/tickets/{ticket['id']}/responses"

    response = await client.post(url, json={"message": "Any update?"}, headers=auth_headers(user))
    assert response.status_code == 201
    assert response.json()["data"]["is_staff"] is False

    response = await client.post(url, json={"message": "Refund issued today."}, headers=auth_headers(admin_user))
    reply = response.json()["data"]
    assert reply["is_staff"] is True
    assert reply["author"] == {"id": str(admin_user.id), "name": "Admin", "role": "ADMIN"}

    response = await client.get(url, headers=auth_headers(user))
    assert [r["message"] for r in response.json()["data"]] == ["Any update?", "Refund issued today."]


@pytest.mark.asyncio
async def test_stranger_cannot_reply(client: AsyncClient, user, other_user):
    ticket = await _open_ticket(client, user)
    response = await client.post(
        f"/support/tickets/{ticket['id']}/responses", json={"message": "me too"}, headers=auth_headers(other_user)
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_closed_ticket_rejects_replies(client: AsyncClient, db, user):
    ticket = await _open_ticket(client, user)
    stored = await db.get(SupportTicket, uuid.UUID(ticket["id"]))
    stored.status = TicketStatus.CLOSED
    await db.commit()

    response = await client.post(
        f"/support/tickets/{ticket['id']}/responses", json={"message": "hello?"}, headers=auth_headers(user)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Ticket is closed"


@pytest.mark.asyncio
async def test_blank_reply_rejected(client: AsyncClient, user):
    ticket = await _open_ticket(client, user)
    response = await client.post(
        f"/support/tickets/{ticket['id']}/responses", json={"message": "   "}, headers=auth_headers(user)
    )
    assert response.status_code == 400
    assert response.json()["error"] == "Message is required"
