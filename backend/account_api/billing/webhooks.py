"""Stripe webhook event handlers — reconcile subscription lifecycle events into the local row.

Stripe delivers events at least once and in no particular order, so every
handler ends in a single sparse upsert of provider-asserted values. Events
that cannot be tied to a user are logged and dropped; database errors
propagate so the endpoint answers 5xx and Stripe retries.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.billing.plans import resolve_plan_id
from account_api.billing.status import map_stripe_status
from account_api.billing.stripe_client import USER_ID_METADATA_KEY, StripeGateway
from account_api.models.subscription import SubscriptionStatus
from account_api.schemas.billing import SubscriptionPatch
from account_api.services.subscription_service import upsert_subscription

logger = logging.getLogger(__name__)

WebhookHandler = Callable[[AsyncSession, stripe.Event, StripeGateway], Awaitable[None]]


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _field(obj: Any, key: str) -> Any:
    """Value of ``key`` on a Stripe object or plain mapping, None when absent.

    Read by key: attribute access to ``items`` collides with ``dict.items()``.
    """
    if obj is None:
        return None
    try:
        return obj[key]
    except KeyError:
        return None


def _ts_to_naive(ts: int | None) -> datetime | None:
    """Convert Stripe Unix timestamp to naive UTC datetime."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def _ref_id(value: Any) -> str | None:
    """ID of a Stripe reference field, whether it arrived as an ID or expanded."""
    if value is None:
        return None
    if isinstance(value, str):
        return value or None
    return _field(value, "id")


def _first(list_object: Any) -> Any:
    """First element of a Stripe list object, or None."""
    if not list_object:
        return None
    data = _field(list_object, "data") or []
    return data[0] if data else None


def _metadata_user_id(obj: Any) -> str | None:
    if obj is None:
        return None
    return _field(_field(obj, "metadata"), USER_ID_METADATA_KEY) or None


def _get_price_id_from_subscription(stripe_sub: Any) -> str | None:
    """Extract the first price ID from a Stripe subscription's items."""
    if stripe_sub is None:
        return None
    item = _first(_field(stripe_sub, "items"))
    if item is None:
        return None
    return _ref_id(_field(item, "price"))


def _get_price_id_from_lines(lines: Any) -> str | None:
    """Price of the first invoice or checkout line (``price`` on older API versions, ``pricing`` on newer)."""
    line = _first(lines)
    if line is None:
        return None
    price_id = _ref_id(_field(line, "price"))
    if price_id:
        return price_id
    pricing = _field(line, "pricing")
    return _field(_field(pricing, "price_details"), "price")


def _get_period_end(stripe_sub: Any) -> datetime | None:
    """Current period end, read from the subscription or, on newer API versions, its first item."""
    period_end = _field(stripe_sub, "current_period_end")
    if period_end is None:
        item = _first(_field(stripe_sub, "items"))
        if item is not None:
            period_end = _field(item, "current_period_end")
    return _ts_to_naive(period_end)


def _get_invoice_subscription_id(invoice: Any) -> str | None:
    subscription_id = _ref_id(_field(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    details = _field(_field(invoice, "parent"), "subscription_details")
    return _ref_id(_field(details, "subscription"))


# ---------------------------------------------------------------------------
# Resolution against Stripe
# ---------------------------------------------------------------------------


async def resolve_user_id(
    gateway: StripeGateway,
    customer_id: str | None,
    stripe_sub: Any = None,
) -> str | None:
    """Find the local user behind a Stripe customer.

    Subscription metadata wins and costs no API call; otherwise the customer
    record's metadata is fetched. Returns None when neither names a user.
    """
    user_id = _metadata_user_id(stripe_sub)
    if user_id:
        return user_id

    if not customer_id:
        return None

    try:
        customer = await gateway.retrieve_customer(customer_id)
    except stripe.StripeError:
        logger.exception("Failed to retrieve Stripe customer %s", customer_id)
        return None

    if _field(customer, "deleted"):
        logger.warning("Stripe customer %s is deleted", customer_id)
        return None

    user_id = _metadata_user_id(customer)
    if not user_id:
        logger.warning("Stripe customer %s has no %s metadata", customer_id, USER_ID_METADATA_KEY)
    return user_id


async def _fetch_subscription(
    gateway: StripeGateway, subscription_id: str, event_type: str
) -> stripe.Subscription | None:
    """Best-effort retrieve of the live subscription; None on Stripe errors."""
    try:
        return await gateway.retrieve_subscription(subscription_id)
    except stripe.StripeError as e:
        logger.warning(
            "%s: could not retrieve subscription %s, continuing without it: %s",
            event_type,
            subscription_id,
            e,
        )
        return None


async def _patch_from_subscription(
    db: AsyncSession,
    stripe_sub: Any,
    customer_id: str | None,
    status: SubscriptionStatus,
    fallback_price_id: str | None = None,
) -> SubscriptionPatch:
    """Patch carrying everything a full subscription object asserts."""
    price_id = _get_price_id_from_subscription(stripe_sub) or fallback_price_id
    plan_id = await resolve_plan_id(db, price_id)
    return SubscriptionPatch.from_known(
        stripe_customer_id=customer_id,
        stripe_subscription_id=_field(stripe_sub, "id"),
        status=status,
        plan_id=plan_id,
        current_period_end=_get_period_end(stripe_sub),
        cancel_at_period_end=bool(_field(stripe_sub, "cancel_at_period_end")),
    )


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------


async def handle_checkout_session_completed(
    db: AsyncSession, event: stripe.Event, gateway: StripeGateway
) -> None:
    """Handle checkout.session.completed — link the customer and record the new subscription."""
    session = event.data.object
    user_id = _metadata_user_id(session)
    customer_id = _ref_id(_field(session, "customer"))
    subscription_id = _ref_id(_field(session, "subscription"))

    if not user_id or not customer_id:
        logger.warning(
            "checkout.session.completed %s: missing user_id or customer (user_id=%s, customer=%s)",
            _field(session, "id"),
            user_id,
            customer_id,
        )
        return

    stripe_sub = None
    if subscription_id:
        stripe_sub = await _fetch_subscription(gateway, subscription_id, event.type)

    if stripe_sub is not None:
        patch = await _patch_from_subscription(
            db,
            stripe_sub,
            customer_id,
            map_stripe_status(_field(stripe_sub, "status")),
            fallback_price_id=_get_price_id_from_lines(_field(session, "line_items")),
        )
    else:
        if subscription_id:
            logger.warning(
                "checkout.session.completed %s: recording provisional active status for user %s",
                _field(session, "id"),
                user_id,
            )
        patch = SubscriptionPatch.from_known(
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
            status=SubscriptionStatus.ACTIVE,
        )

    await upsert_subscription(db, user_id, patch)
    logger.info(
        "Checkout completed: user %s linked to customer %s (subscription=%s, status=%s)",
        user_id,
        customer_id,
        subscription_id,
        patch.status.value if patch.status else None,
    )


async def handle_subscription_updated(
    db: AsyncSession, event: stripe.Event, gateway: StripeGateway
) -> None:
    """Handle customer.subscription.updated — re-derive every field from the embedded subscription."""
    stripe_sub = event.data.object
    customer_id = _ref_id(_field(stripe_sub, "customer"))
    user_id = await resolve_user_id(gateway, customer_id, stripe_sub)

    if not user_id:
        logger.warning(
            "customer.subscription.updated %s: no user for customer %s",
            _field(stripe_sub, "id"),
            customer_id,
        )
        return

    status = map_stripe_status(_field(stripe_sub, "status"))
    patch = await _patch_from_subscription(db, stripe_sub, customer_id, status)
    await upsert_subscription(db, user_id, patch)
    logger.info(
        "Subscription updated: %s → status=%s, cancel_at_period_end=%s",
        _field(stripe_sub, "id"),
        status.value,
        patch.cancel_at_period_end,
    )


async def handle_subscription_deleted(
    db: AsyncSession, event: stripe.Event, gateway: StripeGateway
) -> None:
    """Handle customer.subscription.deleted — mark canceled, keeping the ID and period end for history."""
    stripe_sub = event.data.object
    customer_id = _ref_id(_field(stripe_sub, "customer"))
    user_id = await resolve_user_id(gateway, customer_id, stripe_sub)

    if not user_id:
        logger.warning(
            "customer.subscription.deleted %s: no user for customer %s",
            _field(stripe_sub, "id"),
            customer_id,
        )
        return

    status = map_stripe_status(_field(stripe_sub, "status") or "canceled")
    patch = await _patch_from_subscription(db, stripe_sub, customer_id, status)
    await upsert_subscription(db, user_id, patch)
    logger.info("Subscription deleted: %s → status=%s", _field(stripe_sub, "id"), status.value)


async def _handle_invoice(
    db: AsyncSession,
    event: stripe.Event,
    gateway: StripeGateway,
    default_status: SubscriptionStatus,
) -> None:
    invoice = event.data.object
    subscription_id = _get_invoice_subscription_id(invoice)
    customer_id = _ref_id(_field(invoice, "customer"))

    stripe_sub = None
    if subscription_id:
        stripe_sub = await _fetch_subscription(gateway, subscription_id, event.type)

    user_id = await resolve_user_id(gateway, customer_id, stripe_sub)
    if not user_id:
        logger.warning(
            "%s %s: no user for customer %s (subscription=%s)",
            event.type,
            _field(invoice, "id"),
            customer_id,
            subscription_id,
        )
        return

    price_id = _get_price_id_from_lines(_field(invoice, "lines")) or _get_price_id_from_subscription(stripe_sub)
    plan_id = await resolve_plan_id(db, price_id)

    if stripe_sub is not None:
        status = map_stripe_status(_field(stripe_sub, "status") or default_status.value)
        patch = SubscriptionPatch.from_known(
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
            status=status,
            plan_id=plan_id,
            current_period_end=_get_period_end(stripe_sub),
            cancel_at_period_end=bool(_field(stripe_sub, "cancel_at_period_end")),
        )
    else:
        status = default_status
        patch = SubscriptionPatch.from_known(
            stripe_customer_id=customer_id,
            stripe_subscription_id=subscription_id,
            status=status,
            plan_id=plan_id,
        )

    await upsert_subscription(db, user_id, patch)
    logger.info(
        "%s: invoice %s for user %s → status=%s",
        event.type,
        _field(invoice, "id"),
        user_id,
        status.value,
    )


async def handle_invoice_payment_succeeded(
    db: AsyncSession, event: stripe.Event, gateway: StripeGateway
) -> None:
    """Handle invoice.payment_succeeded — refresh status and period, defaulting to active."""
    await _handle_invoice(db, event, gateway, SubscriptionStatus.ACTIVE)


async def handle_invoice_payment_failed(
    db: AsyncSession, event: stripe.Event, gateway: StripeGateway
) -> None:
    """Handle invoice.payment_failed — refresh status, defaulting to past_due."""
    await _handle_invoice(db, event, gateway, SubscriptionStatus.PAST_DUE)


# Map event types to handler functions
EVENT_HANDLERS: dict[str, WebhookHandler] = {
    "checkout.session.completed": handle_checkout_session_completed,
    "customer.subscription.updated": handle_subscription_updated,
    "customer.subscription.deleted": handle_subscription_deleted,
    "invoice.payment_succeeded": handle_invoice_payment_succeeded,
    "invoice.payment_failed": handle_invoice_payment_failed,
}
