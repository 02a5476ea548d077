"""Tests for lazy and batch subscription expiry."""

import uuid
from datetime import datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.models.subscription import Subscription, SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch
from account_api.services.expiry_service import (
    expire_if_needed,
    should_expire,
    sweep_expired_subscriptions,
)
from account_api.services.subscription_service import get_subscription, upsert_subscription

NOW = datetime(2026, 6, 1, 12, 0, 0)
PAST = NOW - timedelta(days=1)
FUTURE = NOW + timedelta(days=1)


async def _make(
    db: AsyncSession,
    status: SubscriptionStatus,
    period_end: datetime | None,
    cancel_at_period_end: bool = False,
) -> Subscription:
    user_id = str(uuid.uuid4())
    patch = SubscriptionPatch.from_known(
        status=status,
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end,
    )
    await upsert_subscription(db, user_id, patch)
    return await get_subscription(db, user_id)


class TestShouldExpire:
    """Test should_expire."""

    @pytest.mark.parametrize(
        ("status", "period_end", "cancel_flag", "expected"),
        [
            (SubscriptionStatus.TRIALING, PAST, False, True),
            (SubscriptionStatus.TRIALING, FUTURE, False, False),
            (SubscriptionStatus.ACTIVE, PAST, True, True),
            (SubscriptionStatus.ACTIVE, PAST, False, False),
            (SubscriptionStatus.PAST_DUE, PAST, True, True),
            (SubscriptionStatus.ACTIVE, None, True, False),
            (SubscriptionStatus.CANCELED, PAST, True, False),
        ],
    )
    def test_rules(self, status, period_end, cancel_flag, expected):
        sub = Subscription(
            user_id="u",
            status=status,
            current_period_end=period_end,
            cancel_at_period_end=cancel_flag,
        )
        assert should_expire(sub, NOW) is expected

    def test_period_end_equal_to_now_is_not_expired(self):
        sub = Subscription(
            user_id="u",
            status=SubscriptionStatus.TRIALING,
            current_period_end=NOW,
            cancel_at_period_end=False,
        )
        assert should_expire(sub, NOW) is False


class TestExpireIfNeeded:
    """Test the lazy, per-user path."""

    @pytest.mark.asyncio
    async def test_lapsed_trial_is_canceled(self, db_session: AsyncSession):
        sub = await _make(db_session, SubscriptionStatus.TRIALING, PAST)

        assert await expire_if_needed(db_session, sub, now=NOW) is True

        refreshed = await get_subscription(db_session, sub.user_id)
        assert refreshed.status == SubscriptionStatus.CANCELED
        assert refreshed.current_period_end == PAST

    @pytest.mark.asyncio
    async def test_renewing_active_is_untouched(self, db_session: AsyncSession):
        sub = await _make(db_session, SubscriptionStatus.ACTIVE, PAST)

        assert await expire_if_needed(db_session, sub, now=NOW) is False

        refreshed = await get_subscription(db_session, sub.user_id)
        assert refreshed.status == SubscriptionStatus.ACTIVE


class TestSweepExpiredSubscriptions:
    """Test the batch path."""

    @pytest.mark.asyncio
    async def test_sweep(self, db_session: AsyncSession):
        lapsed_trial = await _make(db_session, SubscriptionStatus.TRIALING, PAST)
        running_trial = await _make(db_session, SubscriptionStatus.TRIALING, FUTURE)
        ending = await _make(db_session, SubscriptionStatus.ACTIVE, PAST, cancel_at_period_end=True)
        stale_active = await _make(db_session, SubscriptionStatus.ACTIVE, PAST)
        already_canceled = await _make(db_session, SubscriptionStatus.CANCELED, PAST, cancel_at_period_end=True)

        result = await sweep_expired_subscriptions(db_session, now=NOW)

        assert result.now == NOW
        assert result.expired_trials == 1
        assert result.expired_by_period_end == 1
        assert result.stale_active_count == 1

        async def status_of(sub: Subscription) -> SubscriptionStatus:
            return (await get_subscription(db_session, sub.user_id)).status

        assert await status_of(lapsed_trial) == SubscriptionStatus.CANCELED
        assert await status_of(ending) == SubscriptionStatus.CANCELED
        assert await status_of(running_trial) == SubscriptionStatus.TRIALING
        # Only counted: Stripe renews or cancels it through a webhook
        assert await status_of(stale_active) == SubscriptionStatus.ACTIVE
        assert await status_of(already_canceled) == SubscriptionStatus.CANCELED

    @pytest.mark.asyncio
    async def test_sweep_is_idempotent(self, db_session: AsyncSession):
        await _make(db_session, SubscriptionStatus.TRIALING, PAST)

        first = await sweep_expired_subscriptions(db_session, now=NOW)
        second = await sweep_expired_subscriptions(db_session, now=NOW)

        assert first.expired_trials == 1
        assert second.expired_trials == 0
        assert second.expired_by_period_end == 0

    @pytest.mark.asyncio
    async def test_sweep_ignores_rows_without_period_end(self, db_session: AsyncSession):
        await _make(db_session, SubscriptionStatus.TRIALING, None)

        result = await sweep_expired_subscriptions(db_session, now=NOW)

        assert result.expired_trials == 0
        assert result.stale_active_count == 0
