"""Academia entitlement — free access for university email domains.

The grant is applied when the subscription is displayed and is never
written to the database.
"""

from collections.abc import Iterable
from datetime import datetime

from account_api.auth.identity import AuthenticatedUser
from account_api.billing.plans import ACADEMIA_PLAN_ID
from account_api.database import utcnow
from account_api.models.subscription import Subscription, SubscriptionStatus
from account_api.schemas.billing import SubscriptionView


def is_academia_email(email: str | None, domains: Iterable[str]) -> bool:
    """True if ``email`` belongs to one of ``domains`` (exact domain match after ``@``)."""
    if not email:
        return False
    address = email.strip().lower()
    return any(address.endswith("@" + domain) for domain in domains)


def apply_entitlement_overlay(
    subscription: Subscription | None,
    user: AuthenticatedUser,
    domains: Iterable[str],
    now: datetime | None = None,
) -> SubscriptionView | None:
    """Build the subscription the user should see.

    Academia users without an active subscription are shown an active
    ``academia`` plan with no period end. If they have no row at all, a
    synthetic one is returned. Everyone else sees their stored row as is.
    """
    view = SubscriptionView.model_validate(subscription) if subscription is not None else None

    if view is not None and view.status == SubscriptionStatus.ACTIVE:
        return view
    if not is_academia_email(user.email, domains):
        return view

    if view is None:
        now = now or utcnow()
        return SubscriptionView(
            user_id=user.id,
            status=SubscriptionStatus.ACTIVE,
            plan_id=ACADEMIA_PLAN_ID,
            current_period_end=None,
            cancel_at_period_end=False,
            created_at=now,
            updated_at=now,
        )

    return view.model_copy(
        update={
            "status": SubscriptionStatus.ACTIVE,
            "plan_id": ACADEMIA_PLAN_ID,
            "current_period_end": None,
        }
    )
