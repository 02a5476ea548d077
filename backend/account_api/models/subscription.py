"""Subscription model — Stripe billing state per user."""

import enum
from datetime import datetime

from sqlalchemy import Boolean, Enum, String, false
from sqlalchemy.orm import Mapped, mapped_column

from account_api.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class SubscriptionStatus(str, enum.Enum):
    """Local subscription status vocabulary (``subscription_status`` enum)."""

    NONE = "none"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    TRIALING = "trialing"


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Tracks a user's Stripe subscription. At most one row per user."""

    __tablename__ = "subscriptions"

    # Supabase auth user id — identity is owned by Supabase, so no FK here
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)

    # Stripe identifiers
    stripe_customer_id: Mapped[str | None] = mapped_column(String(255), unique=True, nullable=True)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    # Plan & status
    plan_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            create_constraint=True,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=SubscriptionStatus.NONE,
        server_default=SubscriptionStatus.NONE.value,
    )

    # Billing period
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )

    def __repr__(self) -> str:
        return f"<Subscription(user_id={self.user_id}, plan_id={self.plan_id}, status={self.status.value})>"
