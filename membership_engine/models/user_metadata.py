"""Per-user key/value metadata, used for durable audit markers."""

import uuid

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from membership_engine.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class UserMetadata(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "user_metadata"
    __table_args__ = (UniqueConstraint("user_id", "key", name="uq_user_metadata_user_key"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str | None] = mapped_column(Text, nullable=True)

    user: Mapped["User"] = relationship(back_populates="metadata_entries")  # type: ignore[name-defined]  # noqa: F821

    def __repr__(self) -> str:
        return f"<UserMetadata(user_id={self.user_id}, key={self.key!r})>"
