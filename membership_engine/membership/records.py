"""Immutable account snapshots passed from the store to the pure layer."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType

from membership_engine.membership.tiers import (
    AccountRole,
    AccountStatus,
    MembershipTier,
    StudioType,
)


@dataclass(frozen=True)
class SubscriptionRecord:
    """One billing period of an account."""

    id: str
    created_at: datetime
    status: str = "ACTIVE"
    stripe_subscription_id: str | None = None
    stripe_customer_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None

    @property
    def is_paid(self) -> bool:
        """Externally billed, as opposed to an internally granted free period."""
        return self.stripe_subscription_id is not None or self.stripe_customer_id is not None


@dataclass(frozen=True)
class PaymentRecord:
    """Evidence that money was captured. Only existence matters."""

    id: str


@dataclass(frozen=True)
class AccountRecord:
    """Everything the engine needs to know about one account."""

    id: str
    email: str = ""
    role: AccountRole = AccountRole.USER
    status: AccountStatus = AccountStatus.ACTIVE
    membership_tier: MembershipTier = MembershipTier.BASIC
    studio_created_at: datetime | None = None
    studio_types: tuple[StudioType, ...] = ()
    metadata: Mapping[str, str] = field(default_factory=dict)
    payments: tuple[PaymentRecord, ...] = ()
    # newest first
    subscriptions: tuple[SubscriptionRecord, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))
        object.__setattr__(
            self,
            "subscriptions",
            tuple(sorted(self.subscriptions, key=lambda sub: sub.created_at, reverse=True)),
        )

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    @property
    def has_studio(self) -> bool:
        return self.studio_created_at is not None

    @property
    def latest_subscription(self) -> SubscriptionRecord | None:
        return self.subscriptions[0] if self.subscriptions else None

    @property
    def has_paid_subscription(self) -> bool:
        return any(sub.is_paid for sub in self.subscriptions)
