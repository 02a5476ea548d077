"""Map Stripe subscription statuses onto the local status vocabulary."""

from account_api.models.subscription import SubscriptionStatus

_STRIPE_TO_LOCAL: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "incomplete": SubscriptionStatus.INCOMPLETE,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
}


def map_stripe_status(stripe_status: str | None) -> SubscriptionStatus:
    """Return the local status for a Stripe status. Unknown or missing → ``none``."""
    if not stripe_status:
        return SubscriptionStatus.NONE
    return _STRIPE_TO_LOCAL.get(stripe_status, SubscriptionStatus.NONE)
