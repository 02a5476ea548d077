"""Tests for GET /api/v1/me."""

from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.database import utcnow
from account_api.models.profile import Profile
from account_api.models.subscription import SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch
from account_api.services.subscription_service import get_subscription, upsert_subscription
from conftest import auth_headers_for


class TestReadMe:
    """Test GET /api/v1/me."""

    @pytest.mark.asyncio
    async def test_requires_auth(self, client: AsyncClient):
        response = await client.get("/api/v1/me")
        assert response.status_code == 401
        assert response.json()["detail"] == "not_authenticated"

    @pytest.mark.asyncio
    async def test_new_user(self, client: AsyncClient, test_user, auth_headers):
        response = await client.get("/api/v1/me", headers=auth_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["user"] == {"id": test_user.id, "email": test_user.email}
        assert data["profile"] is None
        assert data["subscription"] is None

    @pytest.mark.asyncio
    async def test_with_profile_and_subscription(
        self, client: AsyncClient, db_session: AsyncSession, test_user, auth_headers
    ):
        db_session.add(Profile(id=test_user.id, display_name="Hana"))
        await upsert_subscription(
            db_session,
            test_user.id,
            SubscriptionPatch(
                stripe_customer_id="cus_1",
                status=SubscriptionStatus.ACTIVE,
                plan_id="pro_monthly",
                current_period_end=datetime(2030, 1, 1),
            ),
        )
        await db_session.commit()

        response = await client.get("/api/v1/me", headers=auth_headers)

        data = response.json()
        assert data["profile"]["display_name"] == "Hana"
        assert data["subscription"]["status"] == "active"
        assert data["subscription"]["plan_id"] == "pro_monthly"
        assert data["subscription"]["stripe_customer_id"] == "cus_1"

    @pytest.mark.asyncio
    async def test_lapsed_trial_is_expired_on_read(
        self, client: AsyncClient, db_session: AsyncSession, test_user, auth_headers
    ):
        await upsert_subscription(
            db_session,
            test_user.id,
            SubscriptionPatch(
                status=SubscriptionStatus.TRIALING,
                plan_id="pro_monthly",
                current_period_end=utcnow() - timedelta(days=1),
            ),
        )
        await db_session.commit()

        response = await client.get("/api/v1/me", headers=auth_headers)

        assert response.json()["subscription"]["status"] == "canceled"
        stored = await get_subscription(db_session, test_user.id)
        assert stored.status == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_academia_user_sees_active_without_record(
        self, client: AsyncClient, db_session: AsyncSession, academia_user
    ):
        response = await client.get("/api/v1/me", headers=auth_headers_for(academia_user))

        subscription = response.json()["subscription"]
        assert subscription["status"] == "active"
        assert subscription["plan_id"] == "academia"
        assert subscription["current_period_end"] is None
        assert await get_subscription(db_session, academia_user.id) is None
