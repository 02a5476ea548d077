"""Async Stripe API wrapper for the account API."""

import hashlib
import logging

import stripe
from stripe import StripeClient

from account_api.config import settings

logger = logging.getLogger(__name__)

# Stripe metadata key that links customers, subscriptions and sessions to a Supabase user.
USER_ID_METADATA_KEY = "user_id"


def _customer_idempotency_key(user_id: str, email: str) -> str:
    """Same key for concurrent creates of one user, a new key once the email changes.

    Stripe rejects a reused key whose request parameters differ.
    """
    email_digest = hashlib.sha256((email or "").encode()).hexdigest()[:16]
    return f"customer-create-{user_id}-{email_digest}"


class StripeGateway:
    """The Stripe calls this service makes, behind one injectable handle."""

    def __init__(self, client: StripeClient, webhook_secret: str) -> None:
        self._client = client
        self._webhook_secret = webhook_secret

    async def create_customer(self, email: str, user_id: str) -> stripe.Customer:
        """Create a Stripe customer tagged with the Supabase user id."""
        logger.info("Creating Stripe customer for user %s", user_id)
        params: dict = {"metadata": {USER_ID_METADATA_KEY: user_id}}
        if email:
            params["email"] = email
        customer = await self._client.v1.customers.create_async(
            params=params,
            options={"idempotency_key": _customer_idempotency_key(user_id, email)},
        )
        logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
        return customer

    async def retrieve_customer(self, customer_id: str) -> stripe.Customer:
        return await self._client.v1.customers.retrieve_async(customer_id)

    async def retrieve_subscription(self, subscription_id: str) -> stripe.Subscription:
        return await self._client.v1.subscriptions.retrieve_async(subscription_id)

    async def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
    ) -> stripe.checkout.Session:
        """Create a subscription-mode Checkout Session.

        The user id is copied into the session metadata so the
        ``checkout.session.completed`` webhook can link it without a lookup.
        """
        logger.info("Creating checkout session for customer %s, price %s", customer_id, price_id)
        return await self._client.v1.checkout.sessions.create_async(
            params={
                "mode": "subscription",
                "customer": customer_id,
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": {USER_ID_METADATA_KEY: user_id},
                "subscription_data": {"metadata": {USER_ID_METADATA_KEY: user_id}},
            }
        )

    async def create_portal_session(
        self, customer_id: str, return_url: str
    ) -> stripe.billing_portal.Session:
        """Create a Stripe Customer Portal session for subscription management."""
        logger.info("Creating portal session for customer %s", customer_id)
        return await self._client.v1.billing_portal.sessions.create_async(
            params={
                "customer": customer_id,
                "return_url": return_url,
            }
        )

    def construct_event(self, payload: bytes, sig_header: str) -> stripe.Event:
        """Verify the signature over the raw body and parse the event.

        Raises:
            stripe.SignatureVerificationError: If the signature does not match.
            ValueError: If the payload is not valid JSON.
        """
        return self._client.construct_event(payload, sig_header, self._webhook_secret)


def get_stripe_gateway() -> StripeGateway:
    """FastAPI dependency: a gateway with async HTTP support."""
    client = StripeClient(
        settings.stripe_secret_key,
        http_client=stripe.HTTPXClient(),
    )
    return StripeGateway(client, settings.stripe_webhook_secret)
