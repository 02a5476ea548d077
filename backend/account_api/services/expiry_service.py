"""Subscription expiry — move lapsed trials and period-end cancellations to ``canceled``.

Runs lazily when a user reads their account, and in bulk from the scheduled
sweep. Both paths only ever write ``status = canceled``, so they converge no
matter how they interleave with each other or with webhooks.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.database import utcnow
from account_api.models.subscription import Subscription, SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch
from account_api.services.subscription_service import upsert_subscription

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepResult:
    """Outcome of one batch sweep."""

    now: datetime
    expired_by_period_end: int
    expired_trials: int
    stale_active_count: int


def should_expire(subscription: Subscription, now: datetime) -> bool:
    """True if the row's period is over and it was never going to renew."""
    if subscription.status == SubscriptionStatus.CANCELED:
        return False

    period_end = subscription.current_period_end
    if period_end is None or period_end >= now:
        return False

    if subscription.status == SubscriptionStatus.TRIALING:
        return True
    return subscription.cancel_at_period_end is True


async def expire_if_needed(
    db: AsyncSession, subscription: Subscription, now: datetime | None = None
) -> bool:
    """Cancel ``subscription`` if it has lapsed. Returns True when a write happened.

    Callers must re-read the row afterwards to see the new status.
    """
    now = now or utcnow()
    if not should_expire(subscription, now):
        return False

    await upsert_subscription(
        db, subscription.user_id, SubscriptionPatch(status=SubscriptionStatus.CANCELED)
    )
    logger.info(
        "Subscription for user %s expired (status=%s, period_end=%s)",
        subscription.user_id,
        subscription.status.value,
        subscription.current_period_end,
    )
    return True


async def sweep_expired_subscriptions(
    db: AsyncSession, now: datetime | None = None
) -> SweepResult:
    """Cancel every lapsed row in two bulk updates and count stale active rows.

    Stale rows (period over, not flagged for cancellation, not canceled) are
    only counted: Stripe is expected to renew or cancel them via webhook.
    """
    now = now or utcnow()
    past_period_end = Subscription.current_period_end < now

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.cancel_at_period_end.is_(True),
            past_period_end,
            Subscription.status != SubscriptionStatus.CANCELED,
        )
        .values(status=SubscriptionStatus.CANCELED, updated_at=now)
        .returning(Subscription.user_id)
        .execution_options(synchronize_session=False)
    )
    expired_by_period_end = list(result.scalars().all())

    result = await db.execute(
        update(Subscription)
        .where(
            Subscription.status == SubscriptionStatus.TRIALING,
            past_period_end,
        )
        .values(status=SubscriptionStatus.CANCELED, updated_at=now)
        .returning(Subscription.user_id)
        .execution_options(synchronize_session=False)
    )
    expired_trials = list(result.scalars().all())

    result = await db.execute(
        select(func.count())
        .select_from(Subscription)
        .where(
            Subscription.cancel_at_period_end.is_(False),
            past_period_end,
            Subscription.status != SubscriptionStatus.CANCELED,
        )
    )
    stale_active_count = result.scalar_one()

    logger.info(
        "Expiry sweep at %s: %d period-end cancellations, %d trials expired",
        now.isoformat(),
        len(expired_by_period_end),
        len(expired_trials),
    )
    if stale_active_count:
        logger.warning(
            "Expiry sweep found %d subscriptions past period end without a cancellation flag",
            stale_active_count,
        )

    return SweepResult(
        now=now,
        expired_by_period_end=len(expired_by_period_end),
        expired_trials=len(expired_trials),
        stale_active_count=stale_active_count,
    )
