"""Pydantic v2 schemas for billing: sparse subscription patches, read views, and endpoint bodies."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from account_api.models.subscription import SubscriptionStatus

# ---------------------------------------------------------------------------
# Write-side: sparse patch
# ---------------------------------------------------------------------------


class SubscriptionPatch(BaseModel):
    """Sparse update for a subscription row.

    Only fields passed explicitly to the constructor are written; everything
    else keeps its stored value. A field can be set to ``False`` but never to
    ``None``: Stripe references, the period end and the plan only ever move
    forward to newer provider values.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    status: SubscriptionStatus | None = None
    plan_id: str | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool | None = None

    @model_validator(mode="after")
    def _reject_explicit_nulls(self) -> "SubscriptionPatch":
        cleared = sorted(name for name in self.model_fields_set if getattr(self, name) is None)
        if cleared:
            raise ValueError(f"Subscription fields cannot be cleared: {', '.join(cleared)}")
        return self

    @classmethod
    def from_known(cls, **fields: Any) -> "SubscriptionPatch":
        """Build a patch from values that may be unknown (``None`` is treated as absent)."""
        return cls(**{name: value for name, value in fields.items() if value is not None})

    def column_values(self) -> dict[str, Any]:
        """Column values to write, keyed by column name."""
        return self.model_dump(exclude_unset=True)


# ---------------------------------------------------------------------------
# Read-side: what the client sees
# ---------------------------------------------------------------------------


class SubscriptionView(BaseModel):
    """Subscription as displayed to the user.

    Built from a stored row, or synthesised by the academia overlay. This type
    is never accepted by a write path.
    """

    model_config = ConfigDict(from_attributes=True, frozen=True)

    user_id: str
    stripe_customer_id: str | None = None
    stripe_subscription_id: str | None = None
    plan_id: str | None = None
    status: SubscriptionStatus
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    created_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Endpoint schemas
# ---------------------------------------------------------------------------


class CheckoutResponse(BaseModel):
    """Stripe Checkout session URL, or an "already subscribed" redirect."""

    url: str | None = None
    session_id: str | None = None
    error: str | None = None
    redirect_url: str | None = None


class PortalResponse(BaseModel):
    """Stripe Customer Portal URL returned to frontend."""

    url: str


class TrialRequest(BaseModel):
    """Invite code for starting a free trial."""

    code: str = Field(..., min_length=1, max_length=255)


class PlanResponse(BaseModel):
    """Plan details for display."""

    id: str
    name: str
    description: str | None = None
    amount: int | None = None
    currency: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PlansListResponse(BaseModel):
    """All available plans."""

    plans: list[PlanResponse]


class SweepResponse(BaseModel):
    """Result of a batch expiry sweep."""

    now: datetime
    expired_by_period_end: int
    expired_trials: int
    stale_active_count: int
