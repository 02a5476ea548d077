"""Billing API endpoints — plans, Stripe Checkout, Customer Portal, and invite trials."""

import logging
import secrets

import stripe
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_api.api.deps import get_current_user, get_db, get_stripe_gateway
from account_api.auth.identity import AuthenticatedUser
from account_api.billing.plans import list_plans
from account_api.billing.stripe_client import StripeGateway
from account_api.config import settings
from account_api.models.subscription import SubscriptionStatus
from account_api.schemas.billing import (
    CheckoutResponse,
    PlanResponse,
    PlansListResponse,
    PortalResponse,
    SubscriptionView,
    TrialRequest,
)
from account_api.services.subscription_service import (
    create_trial_subscription,
    ensure_stripe_customer,
    get_subscription,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/billing", tags=["billing"])


def _bad_gateway(e: stripe.StripeError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=str(e),
    )


@router.get("/plans", response_model=PlansListResponse)
async def get_plans(db: AsyncSession = Depends(get_db)) -> PlansListResponse:
    """List available plans (public — no auth required)."""
    plans = await list_plans(db)
    return PlansListResponse(plans=[PlanResponse.model_validate(p) for p in plans])


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> CheckoutResponse:
    """Create a Stripe Checkout session for the Pro plan.

    Users who are already active get a redirect to their account page
    instead of a second checkout.
    """
    subscription = await get_subscription(db, current_user.id)
    if subscription is not None and subscription.status == SubscriptionStatus.ACTIVE:
        logger.info("Checkout skipped: user %s is already subscribed", current_user.id)
        return CheckoutResponse(
            error="already_subscribed",
            redirect_url=f"{settings.frontend_url}/account",
        )

    if not settings.stripe_pro_monthly_price_id:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Stripe price ID not configured.",
        )

    try:
        customer_id = await ensure_stripe_customer(db, gateway, current_user, subscription)
        # Keep the customer link even if session creation fails below
        await db.commit()
        session = await gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=settings.stripe_pro_monthly_price_id,
            user_id=current_user.id,
            success_url=f"{settings.frontend_url}/billing/success",
            cancel_url=f"{settings.frontend_url}/billing/cancel",
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout error for user %s: %s", current_user.id, e)
        raise _bad_gateway(e) from e

    return CheckoutResponse(url=session.url, session_id=session.id)


@router.post("/portal", response_model=PortalResponse)
async def create_portal(
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> PortalResponse:
    """Create a Stripe Customer Portal session for subscription management."""
    subscription = await get_subscription(db, current_user.id)
    has_customer = subscription is not None and bool(subscription.stripe_customer_id)

    if not has_customer and not settings.portal_create_customer_if_missing:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="no_customer",
        )

    try:
        customer_id = await ensure_stripe_customer(db, gateway, current_user, subscription)
        await db.commit()
        session = await gateway.create_portal_session(
            customer_id=customer_id,
            return_url=f"{settings.frontend_url}/account",
        )
    except stripe.StripeError as e:
        logger.error("Stripe portal error for user %s: %s", current_user.id, e)
        raise _bad_gateway(e) from e

    return PortalResponse(url=session.url)


@router.post(
    "/trial",
    response_model=SubscriptionView,
    status_code=status.HTTP_201_CREATED,
)
async def start_trial(
    body: TrialRequest,
    db: AsyncSession = Depends(get_db),
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> SubscriptionView:
    """Start a free trial with an invite code. One trial per user, never over an existing record."""
    if not settings.trial_invite_code:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="trials_disabled")

    if not secrets.compare_digest(body.code, settings.trial_invite_code):
        logger.info("Invalid trial code from user %s", current_user.id)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="invalid_trial_code")

    if await get_subscription(db, current_user.id) is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subscription_exists")

    await create_trial_subscription(db, current_user.id)
    subscription = await get_subscription(db, current_user.id)
    return SubscriptionView.model_validate(subscription)
