"""Storage interfaces consumed by the engine.

The engine never talks to a database driver directly. It receives an
:class:`AccountStore` and performs every mutation through an
:class:`AccountTransaction` scoped to a single account, so either all of an
account's writes commit or none do.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from membership_engine.membership.records import AccountRecord
from membership_engine.membership.tiers import (
    AccountRole,
    AccountStatus,
    MembershipTier,
    StudioType,
    SubscriptionStatus,
)

T = TypeVar("T")


@dataclass(frozen=True)
class CandidateQuery:
    """Selects accounts for a batch run. ``None`` fields do not filter."""

    membership_tier: MembershipTier | None = None
    status: AccountStatus | None = None
    studio_created_before: datetime | None = None
    exclude_roles: frozenset[AccountRole] = frozenset()
    studio_type: StudioType | None = None
    account_ids: frozenset[str] | None = None
    limit: int | None = None


class AccountTransaction(ABC):
    """Writes against one account inside one atomic transaction."""

    account_id: str

    @abstractmethod
    async def set_membership_tier(self, tier: MembershipTier) -> None: ...

    @abstractmethod
    async def create_subscription(
        self,
        *,
        status: SubscriptionStatus,
        period_start: datetime,
        period_end: datetime,
        created_at: datetime,
    ) -> str:
        """Create a non-paid subscription (no Stripe ids) and return its id."""

    @abstractmethod
    async def update_subscription(
        self,
        subscription_id: str,
        *,
        status: SubscriptionStatus,
        period_end: datetime,
    ) -> None: ...

    @abstractmethod
    async def set_metadata_flag(self, key: str, value: str) -> None:
        """Insert or overwrite one metadata entry."""

    @abstractmethod
    async def replace_studio_types(self, studio_types: Sequence[StudioType]) -> None:
        """Replace the studio's listing categories, keeping the given order."""


class AccountStore(ABC):
    """Read/write access to the account population."""

    @abstractmethod
    async def find_candidates(self, query: CandidateQuery) -> list[AccountRecord]: ...

    @abstractmethod
    async def count_candidates(self, query: CandidateQuery) -> int: ...

    @abstractmethod
    async def get_account(self, account_id: str) -> AccountRecord | None: ...

    @abstractmethod
    async def run_in_transaction(
        self,
        account_id: str,
        fn: Callable[[AccountTransaction], Awaitable[T]],
    ) -> T:
        """Run ``fn`` atomically against one account.

        Commits when ``fn`` returns, rolls back and re-raises when it raises.
        Raises :class:`~membership_engine.errors.AccountNotFoundError` for an
        unknown id.
        """

    async def upsert_metadata_flag(self, account_id: str, key: str, value: str) -> None:
        async def _write(tx: AccountTransaction) -> None:
            await tx.set_metadata_flag(key, value)

        await self.run_in_transaction(account_id, _write)
