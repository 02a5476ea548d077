"""Project model — metadata for a saved project whose body lives in object storage."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from account_api.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Project(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's saved project. ``storage_path`` points at the JSON blob."""

    __tablename__ = "projects"

    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    app_name: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    storage_path: Mapped[str] = mapped_column(String(512), nullable=False)
    thumbnail_path: Mapped[str | None] = mapped_column(String(512), nullable=True)

    def __repr__(self) -> str:
        return f"<Project id={self.id} user_id={self.user_id} app={self.app_name!r}>"
