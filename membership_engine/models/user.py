"""User model: directory account and membership state."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from membership_engine.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A directory account that may own one studio listing."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(50), default="USER", nullable=False)  # USER, ADMIN
    status: Mapped[str] = mapped_column(String(50), default="ACTIVE", nullable=False, index=True)
    membership_tier: Mapped[str] = mapped_column(
        String(50), default="BASIC", nullable=False, index=True
    )  # BASIC, PREMIUM

    # Relationships
    studio_profile: Mapped["StudioProfile | None"] = relationship(  # type: ignore[name-defined]  # noqa: F821
        "StudioProfile",
        back_populates="user", uselist=False, lazy="selectin", cascade="all, delete-orphan"
    )
    subscriptions: Mapped[list["Subscription"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )
    payments: Mapped[list["Payment"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )
    metadata_entries: Mapped[list["UserMetadata"]] = relationship(  # type: ignore[name-defined]  # noqa: F821
        back_populates="user", lazy="selectin", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} tier={self.membership_tier!r}>"
