"""Studio profile and its listing categories."""

import uuid

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from membership_engine.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class StudioProfile(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A user's studio listing. ``created_at`` decides legacy status."""

    __tablename__ = "studio_profiles"

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="ACTIVE")

    # Relationships
    user: Mapped["User"] = relationship(back_populates="studio_profile")  # type: ignore[name-defined]  # noqa: F821
    studio_types: Mapped[list["StudioStudioType"]] = relationship(
        back_populates="studio",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="StudioStudioType.position",
    )

    def __repr__(self) -> str:
        return f"<StudioProfile(id={self.id}, name={self.name!r})>"


class StudioStudioType(UUIDPrimaryKeyMixin, Base):
    """One listing category of a studio."""

    __tablename__ = "studio_studio_types"
    __table_args__ = (UniqueConstraint("studio_id", "studio_type", name="uq_studio_studio_type"),)

    studio_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("studio_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    studio_type: Mapped[str] = mapped_column(String(50), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False, default=0)

    studio: Mapped[StudioProfile] = relationship(back_populates="studio_types")

    def __repr__(self) -> str:
        return f"<StudioStudioType(studio_id={self.studio_id}, type={self.studio_type})>"
