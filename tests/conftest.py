"""
tests/conftest.py
Shared fixtures: a throwaway SQLite database per test, an in-memory Redis
stand-in for the token deny-list, a recording notifier, and one user per role.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.database import Base, get_db
from config.redis_client import get_redis
from main import app
from services.notification.dispatcher import get_notifier
from shared.models.models import Booking, BookingStatus, PaymentStatus, Service, User, UserRole
from shared.utils.security import create_access_token


# ── Test doubles ───────────────────────────────────────────────────────────────

class FakeRedis:
    """Just enough of redis.asyncio.Redis for the session deny-list."""

    def __init__(self):
        self.store: dict[str, str] = {}

    async def exists(self, key: str) -> int:
        return 1 if key in self.store else 0


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def notify(self, event: str, payload: dict) -> bool:
        self.events.append((event, payload))
        return True

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


def auth_headers(user: User) -> dict:
    token, _ = create_access_token(str(user.id), UserRole(user.role).value, user.email)
    return {"Authorization": f"Bearer {token}"}


# ── Database ───────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest_asyncio.fixture
async def client(session_factory, fake_redis, notifier):
    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_notifier] = lambda: notifier

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Users ──────────────────────────────────────────────────────────────────────

async def make_user(
    db: AsyncSession,
    role: UserRole = UserRole.USER,
    name: str = "Test User",
    settings: dict | None = None,
    **fields,
) -> User:
    user = User(
        id=uuid.uuid4(),
        email=fields.pop("email", f"{uuid.uuid4().hex[:10]}@example.com"),
        name=name,
        role=role,
        phone=fields.pop("phone", "+919876543210"),
        settings=settings,
        **fields,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def user(db) -> User:
    return await make_user(db, UserRole.USER, name="Asha Customer")


@pytest_asyncio.fixture
async def other_user(db) -> User:
    return await make_user(db, UserRole.USER, name="Ravi Customer")


@pytest_asyncio.fixture
async def agent_user(db) -> User:
    return await make_user(db, UserRole.AGENT, name="Meera Agent")


@pytest_asyncio.fixture
async def other_agent(db) -> User:
    return await make_user(db, UserRole.AGENT, name="Karan Agent")


@pytest_asyncio.fixture
async def admin_user(db) -> User:
    return await make_user(db, UserRole.ADMIN, name="Admin")


@pytest_asyncio.fixture
async def super_admin_user(db) -> User:
    return await make_user(db, UserRole.SUPER_ADMIN, name="Root")


# ── Catalog / Bookings ─────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def service(db, agent_user) -> Service:
    svc = Service(
        id=uuid.uuid4(),
        agent_id=agent_user.id,
        title="Deep Home Cleaning",
        description="Three-room apartment deep clean",
        price=Decimal("1500.00"),
        category="cleaning",
    )
    db.add(svc)
    await db.commit()
    await db.refresh(svc)
    return svc


@pytest.fixture
def make_booking(db, service, user):
    """Factory: await make_booking(status=BookingStatus.CONFIRMED, customer=other_user)."""

    async def _make(
        status: BookingStatus = BookingStatus.PENDING,
        customer: User | None = None,
        agent_id: uuid.UUID | None = None,
        **fields,
    ) -> Booking:
        booking = Booking(
            id=uuid.uuid4(),
            user_id=(customer or user).id,
            service_id=service.id,
            agent_id=agent_id or service.agent_id,
            status=status,
            scheduled_date=datetime.now(timezone.utc) + timedelta(days=3),
            amount=service.price,
            total_amount=service.price,
            payment_status=fields.pop("payment_status", PaymentStatus.PENDING),
            **fields,
        )
        db.add(booking)
        await db.commit()
        await db.refresh(booking)
        return booking

    return _make


@pytest_asyncio.fixture
async def booking(make_booking) -> Booking:
    return await make_booking()
