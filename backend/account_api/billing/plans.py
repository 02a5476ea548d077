"""Plan catalogue lookups — Stripe price ID to local plan id."""

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.models.plan import Plan

logger = logging.getLogger(__name__)

# Plan granted by the academia overlay. Not sold, so it has no Stripe price.
ACADEMIA_PLAN_ID = "academia"

# Plan assigned to invite-code trials.
TRIAL_PLAN_ID = "pro_monthly"


async def list_plans(db: AsyncSession) -> list[Plan]:
    """All plans in the catalogue, cheapest first."""
    result = await db.execute(select(Plan).order_by(Plan.amount.asc(), Plan.id.asc()))
    return list(result.scalars().all())


async def get_plan_by_price_id(db: AsyncSession, price_id: str) -> Plan | None:
    """Reverse lookup: Stripe price ID -> plan row. Returns None if not found."""
    result = await db.execute(select(Plan).where(Plan.stripe_price_id == price_id))
    return result.scalar_one_or_none()


async def resolve_plan_id(db: AsyncSession, price_id: str | None) -> str | None:
    """Resolve a Stripe price to a local plan id, or None when unresolvable.

    Never raises: a lookup failure is logged and treated like "no match" so the
    caller leaves ``plan_id`` untouched. The lookup runs in a savepoint so a
    failed statement does not abort the caller's transaction.
    """
    if not price_id:
        return None

    try:
        async with db.begin_nested():
            plan = await get_plan_by_price_id(db, price_id)
    except SQLAlchemyError:
        logger.exception("Plan lookup failed for price %s", price_id)
        return None

    if plan is None:
        logger.warning("No plan configured for Stripe price %s", price_id)
        return None
    return plan.id
