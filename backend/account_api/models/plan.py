"""Plan model — static catalogue of purchasable plans."""

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from account_api.database import Base


class Plan(Base):
    """A plan sold through Stripe, keyed by a stable local id (e.g. ``pro_monthly``)."""

    __tablename__ = "plans"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    stripe_price_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[int | None] = mapped_column(Integer, nullable=True)  # minor units
    currency: Mapped[str | None] = mapped_column(String(8), nullable=True)

    def __repr__(self) -> str:
        return f"<Plan id={self.id!r} price={self.stripe_price_id!r}>"
