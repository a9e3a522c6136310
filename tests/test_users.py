"""
tests/test_users.py
User profiles over HTTP: privacy-aware views, updates, role assignment,
settings and soft deletion.
"""

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from shared.models.models import AuditLog, User, UserRole
from shared.utils.security import verify_password
from tests.conftest import auth_headers, make_user

PRIVATE = {"privacy": {"profile_visibility": "private"}}
CONTACTS = {"privacy": {"profile_visibility": "contacts"}}


async def _fresh(session_factory, user_id) -> User:
    async with session_factory() as session:
        return await session.get(User, user_id)


async def _audit_actions(session_factory, entity_id) -> list[str]:
    async with session_factory() as session:
        result = await session.execute(
            select(AuditLog.action).where(AuditLog.entity_id == str(entity_id))
        )
        return sorted(result.scalars().all())


# ── Read ───────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_get_me_returns_full_record(client: AsyncClient, user):
    response = await client.get("/users/me", headers=auth_headers(user))
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["email"] == user.email
    assert data["settings"]["privacy"]["profile_visibility"] == "public"
    assert "password_hash" not in data


@pytest.mark.asyncio
async def test_private_profile_is_forbidden(client: AsyncClient, db, user):
    target = await make_user(db, settings=PRIVATE)
    response = await client.get(f"/users/{target.id}", headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json() == {"success": False, "error": "You do not have permission to view this profile"}


@pytest.mark.asyncio
async def test_admin_sees_private_profile(client: AsyncClient, db, admin_user):
    target = await make_user(db, settings=PRIVATE)
    response = await client.get(f"/users/{target.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json()["data"]["phone"] == target.phone


@pytest.mark.asyncio
async def test_contacts_agent_shows_basic_fields(client: AsyncClient, db, user):
    agent = await make_user(db, UserRole.AGENT, settings=CONTACTS)
    response = await client.get(f"/users/{agent.id}", headers=auth_headers(user))
    assert response.status_code == 200
    assert set(response.json()["data"]) == {"id", "name", "role"}


@pytest.mark.asyncio
async def test_booking_exposes_agent_contact_details(client: AsyncClient, booking, user, agent_user):
    response = await client.get(f"/users/{agent_user.id}", headers=auth_headers(user))
    data = response.json()["data"]
    assert data["phone"] == agent_user.phone
    assert data["email"] == agent_user.email


@pytest.mark.asyncio
async def test_agent_needs_booking_to_see_contacts_customer(client: AsyncClient, db, agent_user, make_booking):
    customer = await make_user(db, settings=CONTACTS)
    response = await client.get(f"/users/{customer.id}", headers=auth_headers(agent_user))
    assert response.status_code == 403

    await make_booking(customer=customer)
    response = await client.get(f"/users/{customer.id}", headers=auth_headers(agent_user))
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_inactive_user_hidden_from_non_admins(client: AsyncClient, db, user):
    target = await make_user(db, is_active=False)
    response = await client.get(f"/users/{target.id}", headers=auth_headers(user))
    assert response.status_code == 404


# ── Update ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_user_updates_own_profile(client: AsyncClient, user, session_factory):
    response = await client.patch(
        f"/users/{user.id}", json={"name": "Asha K", "address": "7 Hill St"}, headers=auth_headers(user)
    )
    assert response.status_code == 200
    assert response.json()["data"]["name"] == "Asha K"
    assert await _audit_actions(session_factory, user.id) == ["USER_UPDATED"]


@pytest.mark.asyncio
async def test_user_cannot_update_someone_else(client: AsyncClient, user, other_user):
    response = await client.patch(
        f"/users/{other_user.id}", json={"name": "Hacked"}, headers=auth_headers(user)
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_password_is_stored_hashed(client: AsyncClient, user, session_factory):
    response = await client.patch(
        f"/users/{user.id}", json={"password": "s3cure-pass"}, headers=auth_headers(user)
    )
    assert response.status_code == 200
    stored = await _fresh(session_factory, user.id)
    assert stored.password_hash != "s3cure-pass"
    assert verify_password("s3cure-pass", stored.password_hash)


@pytest.mark.asyncio
async def test_user_cannot_promote_self(client: AsyncClient, user):
    response = await client.patch(f"/users/{user.id}", json={"role": "ADMIN"}, headers=auth_headers(user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_unknown_role_rejected(client: AsyncClient, user, admin_user):
    response = await client.patch(f"/users/{user.id}", json={"role": "admin"}, headers=auth_headers(admin_user))
    assert response.status_code == 400
    assert response.json()["error"] == "Invalid role"


@pytest.mark.asyncio
async def test_admin_promotes_user_to_agent(client: AsyncClient, user, admin_user, session_factory):
    response = await client.patch(f"/users/{user.id}", json={"role": "AGENT"}, headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json()["data"]["role"] == "AGENT"
    assert await _audit_actions(session_factory, user.id) == ["ROLE_CHANGED", "USER_UPDATED"]


@pytest.mark.asyncio
async def test_admin_cannot_grant_admin(client: AsyncClient, user, admin_user):
    response = await client.patch(f"/users/{user.id}", json={"role": "ADMIN"}, headers=auth_headers(admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_cannot_edit_peer_admin(client: AsyncClient, db, admin_user):
    peer = await make_user(db, UserRole.ADMIN)
    response = await client.patch(f"/users/{peer.id}", json={"name": "Renamed"}, headers=auth_headers(admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_super_admin_grants_admin(client: AsyncClient, user, super_admin_user):
    response = await client.patch(
        f"/users/{user.id}", json={"role": "ADMIN"}, headers=auth_headers(super_admin_user)
    )
    assert response.status_code == 200
    assert response.json()["data"]["role"] == "ADMIN"


@pytest.mark.asyncio
async def test_user_cannot_change_own_account_status(client: AsyncClient, user):
    response = await client.patch(f"/users/{user.id}", json={"is_active": False}, headers=auth_headers(user))
    assert response.status_code == 403
    assert response.json()["error"] == "Only admins can change account status"


# ── Settings ───────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_settings_patch_keeps_other_fields(client: AsyncClient, db, session_factory):
    target = await make_user(db, settings={"privacy": {"profile_visibility": "contacts", "share_contact_info": True}})
    response = await client.patch(
        f"/users/{target.id}/settings",
        json={"appearance": {"theme": "dark"}},
        headers=auth_headers(target),
    )
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["appearance"]["theme"] == "dark"
    assert data["privacy"]["profile_visibility"] == "contacts"
    assert data["privacy"]["share_contact_info"] is True

    stored = await _fresh(session_factory, target.id)
    assert stored.settings["appearance"]["theme"] == "dark"
    assert await _audit_actions(session_factory, target.id) == ["SETTING_CHANGED"]


@pytest.mark.asyncio
async def test_settings_patch_with_same_values_is_noop(client: AsyncClient, user, session_factory):
    response = await client.patch(
        f"/users/{user.id}/settings",
        json={"privacy": {"profile_visibility": "public"}},
        headers=auth_headers(user),
    )
    assert response.json()["message"] == "No changes"
    assert await _audit_actions(session_factory, user.id) == []


@pytest.mark.asyncio
async def test_invalid_settings_value_rejected(client: AsyncClient, user):
    response = await client.patch(
        f"/users/{user.id}/settings",
        json={"privacy": {"profile_visibility": "everyone"}},
        headers=auth_headers(user),
    )
    assert response.status_code == 400
    assert response.json()["success"] is False


# ── Delete ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_self_delete_is_forbidden_even_for_super_admin(client: AsyncClient, super_admin_user):
    response = await client.delete(f"/users/{super_admin_user.id}", headers=auth_headers(super_admin_user))
    assert response.status_code == 403
    assert response.json()["error"] == "Cannot delete your own account"


@pytest.mark.asyncio
async def test_admin_soft_deletes_user(client: AsyncClient, user, admin_user, session_factory):
    response = await client.delete(f"/users/{user.id}", headers=auth_headers(admin_user))
    assert response.status_code == 200
    assert response.json()["data"] == {"id": str(user.id), "is_active": False}

    stored = await _fresh(session_factory, user.id)
    assert stored is not None
    assert stored.is_active is False
    assert await _audit_actions(session_factory, user.id) == ["USER_DELETED"]


@pytest.mark.asyncio
async def test_admin_cannot_delete_admin(client: AsyncClient, db, admin_user):
    peer = await make_user(db, UserRole.ADMIN)
    response = await client.delete(f"/users/{peer.id}", headers=auth_headers(admin_user))
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_agent_cannot_delete_users(client: AsyncClient, user, agent_user):
    response = await client.delete(f"/users/{user.id}", headers=auth_headers(agent_user))
    assert response.status_code == 403
