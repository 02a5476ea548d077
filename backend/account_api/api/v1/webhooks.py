"""Stripe webhook endpoint — receives and processes Stripe events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.api.deps import get_db, get_stripe_gateway
from account_api.billing.stripe_client import StripeGateway
from account_api.billing.webhooks import EVENT_HANDLERS

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> dict[str, str]:
    """Receive and process Stripe webhook events.

    400 for a missing or invalid signature, 200 for events that are handled
    or deliberately ignored, 500 when the database write fails so Stripe
    retries the delivery.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        logger.warning("Webhook request without stripe-signature header")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing stripe-signature",
        )

    # 2. Verify signature
    try:
        event = gateway.construct_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e

    # 3. Dispatch to handler
    handler = EVENT_HANDLERS.get(event.type)
    if handler is None:
        logger.info("Unhandled webhook event type: %s (id=%s)", event.type, event.id)
        return {"status": "ignored"}

    logger.info("Processing webhook event: %s (id=%s)", event.type, event.id)

    # 4. Commit here so a failed write turns into a 500 before Stripe gets a 200
    try:
        await handler(db, event, gateway)
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.exception("Error processing webhook event %s", event.id)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    return {"status": "processed"}
