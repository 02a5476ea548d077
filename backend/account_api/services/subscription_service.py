"""Subscription service — reads and sparse upserts of the per-user subscription row."""

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.auth.identity import AuthenticatedUser
from account_api.billing.academia import is_academia_email
from account_api.billing.plans import TRIAL_PLAN_ID
from account_api.billing.stripe_client import StripeGateway
from account_api.config import settings
from account_api.database import utcnow
from account_api.models.subscription import Subscription, SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch

logger = logging.getLogger(__name__)

TRIAL_PERIOD_DAYS = 30

# Statuses that grant access to gated features.
ENTITLED_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING})

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def get_subscription(db: AsyncSession, user_id: str) -> Subscription | None:
    """Fetch the user's subscription row, bypassing any stale identity-map copy."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def upsert_subscription(
    db: AsyncSession, user_id: str, patch: SubscriptionPatch
) -> None:
    """Insert or merge ``patch`` into the user's row in one statement.

    ``INSERT ... ON CONFLICT (user_id) DO UPDATE`` touching only the columns
    present in the patch, plus ``updated_at``. Replaying the same patch leaves
    the row unchanged apart from ``updated_at``. Database errors propagate.
    """
    values = patch.column_values()
    now = utcnow()

    dialect = db.get_bind().dialect.name
    try:
        insert = _DIALECT_INSERTS[dialect]
    except KeyError:
        raise NotImplementedError(f"Subscription upsert is not supported on {dialect}") from None

    stmt = insert(Subscription).values(user_id=user_id, updated_at=now, **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["user_id"],
        set_={**{name: stmt.excluded[name] for name in values}, "updated_at": now},
    )

    try:
        await db.execute(stmt)
    except SQLAlchemyError:
        logger.error("Subscription upsert failed for user %s (fields=%s)", user_id, sorted(values))
        raise

    logger.info("Upserted subscription for user %s: %s", user_id, values)


async def ensure_stripe_customer(
    db: AsyncSession,
    gateway: StripeGateway,
    user: AuthenticatedUser,
    subscription: Subscription | None,
) -> str:
    """Return the user's Stripe customer ID, creating and linking one if missing.

    Creates the subscription row when the user has none yet. Later calls see
    the stored ID and skip Stripe entirely.
    """
    if subscription is not None and subscription.stripe_customer_id:
        return subscription.stripe_customer_id

    customer = await gateway.create_customer(email=user.email, user_id=user.id)
    await upsert_subscription(db, user.id, SubscriptionPatch(stripe_customer_id=customer.id))
    logger.info("Linked Stripe customer %s to user %s", customer.id, user.id)
    return customer.id


async def check_subscription(db: AsyncSession, user: AuthenticatedUser) -> bool:
    """True if the user may use subscriber-only features.

    A lapsed trial or period-end cancellation is expired first, so the gate
    never grants access the account page would already show as canceled.
    The caller owns the transaction and must commit to persist that write.
    """
    from account_api.services.expiry_service import expire_if_needed

    subscription = await get_subscription(db, user.id)
    if subscription is not None and await expire_if_needed(db, subscription):
        subscription = await get_subscription(db, user.id)
    if subscription is not None and subscription.status in ENTITLED_STATUSES:
        return True
    return is_academia_email(user.email, settings.normalized_academia_domains)


async def create_trial_subscription(
    db: AsyncSession, user_id: str, now: datetime | None = None
) -> datetime:
    """Start a free trial for the user. Returns the trial end.

    The trial lapses through the expiry sweeper like any Stripe trial.
    """
    trial_end = (now or utcnow()) + timedelta(days=TRIAL_PERIOD_DAYS)
    await upsert_subscription(
        db,
        user_id,
        SubscriptionPatch(
            status=SubscriptionStatus.TRIALING,
            plan_id=TRIAL_PLAN_ID,
            current_period_end=trial_end,
            cancel_at_period_end=False,
        ),
    )
    logger.info("Started trial for user %s until %s", user_id, trial_end.isoformat())
    return trial_end
