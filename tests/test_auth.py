"""
tests/test_auth.py
Session-token resolution and the response envelope for auth failures.
"""

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from jose import jwt

from config.settings import settings
from shared.middleware.auth import get_token_data
from shared.models.models import UserRole
from shared.utils.errors import AuthenticationRequired
from shared.utils.security import create_access_token
from tests.conftest import auth_headers, make_user


@pytest.mark.asyncio
async def test_missing_token(client: AsyncClient):
    response = await client.get("/users/me")
    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Authentication required"}
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_garbage_token(client: AsyncClient):
    response = await client.get("/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_expired_token(client: AsyncClient, user):
    payload = {
        "sub": str(user.id),
        "role": "USER",
        "type": "access",
        "exp": datetime.now(timezone.utc) - timedelta(minutes=1),
    }
    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    response = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_revoked_token(client: AsyncClient, user, fake_redis):
    token, jti = create_access_token(str(user.id), UserRole.USER.value, user.email)
    fake_redis.store[f"jwt_revoked:{jti}"] = "1"
    response = await client.get("/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 401
    assert response.json()["error"] == "Token has been revoked"


@pytest.mark.asyncio
async def test_inactive_account(client: AsyncClient, db):
    inactive = await make_user(db, is_active=False)
    response = await client.get("/users/me", headers=auth_headers(inactive))
    assert response.status_code == 403
    assert response.json()["error"] == "User account is inactive"


@pytest.mark.asyncio
async def test_unknown_route_uses_envelope(client: AsyncClient):
    response = await client.get("/nowhere")
    assert response.status_code == 404
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_role_comes_from_database_not_token(client: AsyncClient, user):
    """A stale token claiming a higher role grants nothing."""
    token, _ = create_access_token(str(user.id), UserRole.ADMIN.value, user.email)
    response = await client.get("/admin/users", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_token_resolution_raises_authentication_required(fake_redis):
    with pytest.raises(AuthenticationRequired) as exc:
        await get_token_data(None, fake_redis)
    assert exc.value.status_code == 401
