"""Shared test configuration and fixtures.

Two kinds of store are available:
- ``fake_store``: an in-memory :class:`AccountStore` with copy-on-write
  transactions and per-account failure injection.
- ``db_store``: the real :class:`DatabaseAccountStore` over an in-memory
  SQLite database (aiosqlite), schema created fresh for every test.
"""

import dataclasses
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from datetime import datetime
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import membership_engine.models  # noqa: F401  (registers every table on Base.metadata)
from membership_engine.database import Base, create_session_factory
from membership_engine.errors import AccountNotFoundError, StudioProfileMissingError
from membership_engine.membership.records import AccountRecord, SubscriptionRecord
from membership_engine.membership.tiers import MembershipTier, StudioType, SubscriptionStatus
from membership_engine.models.payment import Payment
from membership_engine.models.studio import StudioProfile, StudioStudioType
from membership_engine.models.subscription import Subscription
from membership_engine.models.user import User
from membership_engine.models.user_metadata import UserMetadata
from membership_engine.store.base import AccountStore, AccountTransaction, CandidateQuery, T
from membership_engine.store.database import DatabaseAccountStore

# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class SimulatedWriteError(RuntimeError):
    pass


class FakeAccountTransaction(AccountTransaction):
    """Collects writes against a private copy of one account."""

    def __init__(self, account: AccountRecord):
        self.account_id = account.id
        self._account = account
        self._tier = account.membership_tier
        self._subscriptions = list(account.subscriptions)
        self._metadata = dict(account.metadata)
        self._studio_types = list(account.studio_types)

    async def set_membership_tier(self, tier: MembershipTier) -> None:
        self._tier = MembershipTier(tier)

    async def create_subscription(
        self,
        *,
        status: SubscriptionStatus,
        period_start: datetime,
        period_end: datetime,
        created_at: datetime,
    ) -> str:
        subscription = SubscriptionRecord(
            id=str(uuid.uuid4()),
            created_at=created_at,
            status=status.value,
            current_period_start=period_start,
            current_period_end=period_end,
        )
        self._subscriptions.append(subscription)
        return subscription.id

    async def update_subscription(
        self,
        subscription_id: str,
        *,
        status: SubscriptionStatus,
        period_end: datetime,
    ) -> None:
        for index, subscription in enumerate(self._subscriptions):
            if subscription.id == subscription_id:
                self._subscriptions[index] = dataclasses.replace(
                    subscription, status=status.value, current_period_end=period_end
                )
                return
        raise LookupError(f"Subscription {subscription_id} not found")

    async def set_metadata_flag(self, key: str, value: str) -> None:
        self._metadata[key] = value

    async def replace_studio_types(self, studio_types: Sequence[StudioType]) -> None:
        if not self._account.has_studio:
            raise StudioProfileMissingError(self.account_id)
        self._studio_types = [StudioType(t) for t in studio_types]

    def snapshot(self) -> AccountRecord:
        return dataclasses.replace(
            self._account,
            membership_tier=self._tier,
            subscriptions=tuple(self._subscriptions),
            metadata=self._metadata,
            studio_types=tuple(self._studio_types),
        )


class FakeAccountStore(AccountStore):
    """Dict-backed store. A transaction commits only if ``fn`` returns."""

    def __init__(self, accounts: Sequence[AccountRecord] = ()):
        self.accounts: dict[str, AccountRecord] = {account.id: account for account in accounts}
        self.commits = 0
        self._failing: set[str] = set()

    def add(self, *accounts: AccountRecord) -> None:
        for account in accounts:
            self.accounts[account.id] = account

    def fail_for(self, account_id: str) -> None:
        """Make every transaction for ``account_id`` fail after its writes."""
        self._failing.add(account_id)

    def _matches(self, account: AccountRecord, query: CandidateQuery) -> bool:
        if not account.has_studio:
            return False
        if query.membership_tier is not None and account.membership_tier != query.membership_tier:
            return False
        if query.status is not None and account.status != query.status:
            return False
        if query.studio_created_before is not None and account.studio_created_at >= query.studio_created_before:
            return False
        if account.role in query.exclude_roles:
            return False
        if query.studio_type is not None and query.studio_type not in account.studio_types:
            return False
        if query.account_ids is not None and account.id not in query.account_ids:
            return False
        return True

    async def find_candidates(self, query: CandidateQuery) -> list[AccountRecord]:
        matched = sorted(
            (a for a in self.accounts.values() if self._matches(a, query)),
            key=lambda a: (a.studio_created_at, a.id),
        )
        return matched[: query.limit] if query.limit is not None else matched

    async def count_candidates(self, query: CandidateQuery) -> int:
        return len(await self.find_candidates(query))

    async def get_account(self, account_id: str) -> AccountRecord | None:
        return self.accounts.get(account_id)

    async def run_in_transaction(
        self,
        account_id: str,
        fn: Callable[[AccountTransaction], Awaitable[T]],
    ) -> T:
        account = self.accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        tx = FakeAccountTransaction(account)
        result = await fn(tx)
        if account_id in self._failing:
            raise SimulatedWriteError(f"simulated write failure for {account_id}")
        self.accounts[account_id] = tx.snapshot()
        self.commits += 1
        return result


@pytest.fixture
def fake_store() -> FakeAccountStore:
    return FakeAccountStore()


# ---------------------------------------------------------------------------
# SQLite-backed store
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine; StaticPool keeps one shared connection."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


@pytest.fixture
def db_store(session_factory: async_sessionmaker[AsyncSession]) -> DatabaseAccountStore:
    return DatabaseAccountStore(session_factory)


async def insert_account(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    email: str | None = None,
    role: str = "USER",
    status: str = "ACTIVE",
    membership_tier: str = "BASIC",
    studio_created_at: datetime | None = None,
    studio_types: Sequence[str] = ("HOME",),
    metadata: dict[str, str] | None = None,
    subscriptions: Sequence[dict] = (),
    payments: Sequence[str] = (),
) -> str:
    """Insert a user (and optionally a studio) and return the user id."""
    async with session_factory() as session:
        async with session.begin():
            user = User(
                email=email or f"user-{uuid.uuid4().hex[:8]}@test.com",
                role=role,
                status=status,
                membership_tier=membership_tier,
            )
            session.add(user)
            await session.flush()

            if studio_created_at is not None:
                studio = StudioProfile(
                    user_id=user.id, name="Test Studio", created_at=studio_created_at
                )
                session.add(studio)
                await session.flush()
                for position, studio_type in enumerate(studio_types):
                    session.add(
                        StudioStudioType(studio_id=studio.id, studio_type=studio_type, position=position)
                    )

            for key, value in (metadata or {}).items():
                session.add(UserMetadata(user_id=user.id, key=key, value=value))
            for fields in subscriptions:
                session.add(Subscription(user_id=user.id, **fields))
            for payment_status in payments:
                session.add(Payment(user_id=user.id, amount_cents=9900, status=payment_status))
            user_id = str(user.id)
    return user_id


@pytest.fixture
def seed_account(session_factory: async_sessionmaker[AsyncSession]):
    """Return a coroutine function that inserts an account into ``db_store``."""

    async def _seed(**kwargs) -> str:
        return await insert_account(session_factory, **kwargs)

    return _seed


@pytest_asyncio.fixture
async def file_database(tmp_path):
    """SQLite database on disk, for code that opens its own engine from a URL."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'membership.db'}"
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = create_session_factory(engine)

    async def _seed(**kwargs) -> str:
        return await insert_account(factory, **kwargs)

    yield SimpleNamespace(url=url, seed=_seed, store=DatabaseAccountStore(factory))
    await engine.dispose()
