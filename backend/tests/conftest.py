"""Shared test configuration and fixtures.

Each test gets a fresh schema on an in-memory SQLite database (aiosqlite),
or on ``TEST_DATABASE_URL`` when set, so tests can commit freely. Stripe is
replaced by a mock gateway and object storage by a mock ``ProjectStorage``;
both are wired in through ``app.dependency_overrides``.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
import stripe
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from account_api.auth.identity import AuthenticatedUser
from account_api.billing.stripe_client import StripeGateway, get_stripe_gateway
from account_api.config import settings
from account_api.database import Base, get_db
from account_api.main import app
from account_api.models.plan import Plan
from account_api.services.project_storage import ProjectStorage, get_project_storage

PRO_PRICE_ID = "price_pro_monthly_test"

# In-memory SQLite unless pointed at a disposable PostgreSQL database
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")


# ---------------------------------------------------------------------------
# Database — fresh schema per test
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on the per-test database."""
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def pro_plan(db_session: AsyncSession) -> Plan:
    plan = Plan(
        id="pro_monthly",
        stripe_price_id=PRO_PRICE_ID,
        name="Pro",
        description="Pro monthly",
        amount=980,
        currency="jpy",
    )
    db_session.add(plan)
    await db_session.commit()
    return plan


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------


@pytest.fixture
def stripe_gateway() -> MagicMock:
    """Mock gateway: async methods become AsyncMocks, ``construct_event`` stays sync."""
    return MagicMock(spec=StripeGateway)


@pytest.fixture
def project_storage() -> MagicMock:
    return MagicMock(spec=ProjectStorage)


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    stripe_gateway: MagicMock,
    project_storage: MagicMock,
) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and mocks."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session
        await db_session.commit()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_stripe_gateway] = lambda: stripe_gateway
    app.dependency_overrides[get_project_storage] = lambda: project_storage

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Identity — Supabase-style access tokens
# ---------------------------------------------------------------------------


def make_access_token(
    user_id: str,
    email: str,
    expires_in: timedelta = timedelta(hours=1),
    audience: str | None = None,
    secret: str | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "aud": audience or settings.supabase_jwt_audience,
        "role": "authenticated",
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, secret or settings.supabase_jwt_secret, algorithm=settings.jwt_algorithm)


def auth_headers_for(user: AuthenticatedUser) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_access_token(user.id, user.email)}"}


@pytest.fixture
def test_user() -> AuthenticatedUser:
    unique = uuid.uuid4().hex[:8]
    return AuthenticatedUser(id=str(uuid.uuid4()), email=f"user-{unique}@example.com")


@pytest.fixture
def auth_headers(test_user: AuthenticatedUser) -> dict[str, str]:
    return auth_headers_for(test_user)


@pytest.fixture
def academia_user() -> AuthenticatedUser:
    return AuthenticatedUser(id=str(uuid.uuid4()), email="student@tamabi.ac.jp")


# ---------------------------------------------------------------------------
# Stripe payloads
# ---------------------------------------------------------------------------


def stripe_subscription_payload(
    sub_id: str = "sub_test_123",
    customer: str = "cus_test_123",
    status: str = "active",
    price_id: str = PRO_PRICE_ID,
    period_end: int = 1893456000,  # 2030-01-01T00:00:00Z
    cancel_at_period_end: bool = False,
    metadata: dict | None = None,
) -> dict:
    """Subscription as returned by the current Stripe API (period end on the item)."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": metadata or {},
        "items": {
            "object": "list",
            "data": [
                {
                    "id": "si_test_1",
                    "object": "subscription_item",
                    "price": {"id": price_id, "object": "price"},
                    "current_period_end": period_end,
                }
            ],
        },
    }


def make_stripe_subscription(**kwargs) -> stripe.Subscription:
    return stripe.Subscription.construct_from(stripe_subscription_payload(**kwargs), "sk_test")


def make_stripe_customer(customer_id: str = "cus_test_123", user_id: str | None = None) -> stripe.Customer:
    metadata = {"user_id": user_id} if user_id else {}
    return stripe.Customer.construct_from(
        {"id": customer_id, "object": "customer", "metadata": metadata},
        "sk_test",
    )


def make_event(event_type: str, data_object: dict) -> stripe.Event:
    return stripe.Event.construct_from(
        {
            "id": f"evt_test_{uuid.uuid4().hex[:8]}",
            "object": "event",
            "type": event_type,
            "data": {"object": data_object},
        },
        "sk_test",
    )
