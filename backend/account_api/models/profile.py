"""Profile model — display data keyed by the Supabase user id."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from account_api.database import Base, TimestampMixin


class Profile(TimestampMixin, Base):
    """User profile row. Written by the frontend; read-only here."""

    __tablename__ = "profiles"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Profile id={self.id} display_name={self.display_name!r}>"
