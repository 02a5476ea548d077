"""Tests for the plan catalogue lookups."""

import logging
import uuid
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.billing.plans import get_plan_by_price_id, list_plans, resolve_plan_id
from account_api.models.plan import Plan
from account_api.models.subscription import SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch
from account_api.services.subscription_service import get_subscription, upsert_subscription
from conftest import PRO_PRICE_ID


class TestResolvePlanId:
    """Test resolve_plan_id."""

    @pytest.mark.asyncio
    async def test_known_price(self, db_session: AsyncSession, pro_plan: Plan):
        assert await resolve_plan_id(db_session, PRO_PRICE_ID) == "pro_monthly"

    @pytest.mark.asyncio
    async def test_unknown_price_logs_warning(self, db_session: AsyncSession, pro_plan: Plan, caplog):
        with caplog.at_level(logging.WARNING, logger="account_api.billing.plans"):
            assert await resolve_plan_id(db_session, "price_unknown") is None
        assert any(
            r.levelno == logging.WARNING and "price_unknown" in r.getMessage() for r in caplog.records
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("price_id", [None, ""])
    async def test_empty_price_skips_lookup(self, db_session: AsyncSession, price_id):
        with patch("account_api.billing.plans.get_plan_by_price_id", new=AsyncMock()) as lookup:
            assert await resolve_plan_id(db_session, price_id) is None
        lookup.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_database_error_is_unresolved_and_logged_as_error(
        self, db_session: AsyncSession, caplog
    ):
        """A failed lookup is logged at error level, distinct from not-found."""
        failing = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("db down")))
        with (
            patch("account_api.billing.plans.get_plan_by_price_id", new=failing),
            caplog.at_level(logging.WARNING, logger="account_api.billing.plans"),
        ):
            assert await resolve_plan_id(db_session, PRO_PRICE_ID) is None

        levels = {r.levelno for r in caplog.records}
        assert logging.ERROR in levels
        assert logging.WARNING not in levels


    @pytest.mark.asyncio
    async def test_failed_lookup_statement_leaves_session_usable(
        self, db_session: AsyncSession, pro_plan: Plan
    ):
        """A statement error in the lookup does not poison later writes in the same transaction."""

        async def broken_lookup(db: AsyncSession, price_id: str):
            await db.execute(text("SELECT no_such_column FROM plans"))

        with patch("account_api.billing.plans.get_plan_by_price_id", new=broken_lookup):
            assert await resolve_plan_id(db_session, PRO_PRICE_ID) is None

        user_id = str(uuid.uuid4())
        await upsert_subscription(
            db_session, user_id, SubscriptionPatch(status=SubscriptionStatus.ACTIVE)
        )
        await db_session.commit()

        record = await get_subscription(db_session, user_id)
        assert record.status == SubscriptionStatus.ACTIVE
        assert await resolve_plan_id(db_session, PRO_PRICE_ID) == "pro_monthly"

class TestPlanCatalogue:
    """Test list_plans and get_plan_by_price_id."""

    @pytest.mark.asyncio
    async def test_list_plans_cheapest_first(self, db_session: AsyncSession, pro_plan: Plan):
        db_session.add(
            Plan(id="pro_yearly", stripe_price_id="price_year", name="Pro (yearly)", amount=9800, currency="jpy")
        )
        await db_session.commit()

        plans = await list_plans(db_session)
        assert [p.id for p in plans] == ["pro_monthly", "pro_yearly"]

    @pytest.mark.asyncio
    async def test_get_plan_by_price_id_missing(self, db_session: AsyncSession):
        assert await get_plan_by_price_id(db_session, "price_missing") is None
