"""SQLAlchemy implementation of the account store."""

import logging
import uuid
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime

from sqlalchemy import Select, delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from membership_engine.errors import AccountNotFoundError, StudioProfileMissingError
from membership_engine.membership.records import AccountRecord, PaymentRecord, SubscriptionRecord
from membership_engine.membership.tiers import (
    AccountRole,
    AccountStatus,
    MembershipTier,
    StudioType,
    SubscriptionStatus,
)
from membership_engine.models.studio import StudioProfile, StudioStudioType
from membership_engine.models.subscription import Subscription
from membership_engine.models.user import User
from membership_engine.models.user_metadata import UserMetadata
from membership_engine.store.base import AccountStore, AccountTransaction, CandidateQuery, T

logger = logging.getLogger(__name__)

SUCCEEDED_PAYMENT_STATUS = "SUCCEEDED"


def _to_uuid(account_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(account_id))
    except ValueError as exc:
        raise AccountNotFoundError(account_id) from exc


def _coerce(enum_cls, value, default):
    """Map unknown column values to a safe default instead of failing the batch."""
    try:
        return enum_cls(value)
    except ValueError:
        return default


def _studio_types(studio: StudioProfile | None) -> tuple[StudioType, ...]:
    if studio is None:
        return ()
    types = (_coerce(StudioType, row.studio_type, None) for row in studio.studio_types)
    return tuple(t for t in types if t is not None)


def to_account_record(user: User) -> AccountRecord:
    """Snapshot a loaded ``User`` (relationships eager-loaded) for the engine."""
    studio = user.studio_profile
    return AccountRecord(
        id=str(user.id),
        email=user.email,
        role=_coerce(AccountRole, user.role, AccountRole.USER),
        status=_coerce(AccountStatus, user.status, AccountStatus.INACTIVE),
        membership_tier=_coerce(MembershipTier, user.membership_tier, MembershipTier.BASIC),
        studio_created_at=studio.created_at if studio is not None else None,
        studio_types=_studio_types(studio),
        metadata={m.key: m.value for m in user.metadata_entries if m.value is not None},
        payments=tuple(
            PaymentRecord(id=str(p.id)) for p in user.payments if p.status == SUCCEEDED_PAYMENT_STATUS
        ),
        subscriptions=tuple(
            SubscriptionRecord(
                id=str(s.id),
                created_at=s.created_at,
                status=s.status,
                stripe_subscription_id=s.stripe_subscription_id,
                stripe_customer_id=s.stripe_customer_id,
                current_period_start=s.current_period_start,
                current_period_end=s.current_period_end,
            )
            for s in user.subscriptions
        ),
    )


def _apply_filters(stmt: Select, query: CandidateQuery) -> Select:
    stmt = stmt.join(StudioProfile, StudioProfile.user_id == User.id)
    if query.membership_tier is not None:
        stmt = stmt.where(User.membership_tier == query.membership_tier.value)
    if query.status is not None:
        stmt = stmt.where(User.status == query.status.value)
    if query.studio_created_before is not None:
        stmt = stmt.where(StudioProfile.created_at < query.studio_created_before)
    if query.exclude_roles:
        stmt = stmt.where(User.role.not_in([role.value for role in query.exclude_roles]))
    if query.studio_type is not None:
        stmt = stmt.where(
            StudioProfile.studio_types.any(StudioStudioType.studio_type == query.studio_type.value)
        )
    if query.account_ids is not None:
        stmt = stmt.where(User.id.in_([_to_uuid(account_id) for account_id in query.account_ids]))
    return stmt


class _DatabaseAccountTransaction(AccountTransaction):
    def __init__(self, session: AsyncSession, user: User):
        self._session = session
        self._user = user
        self.account_id = str(user.id)

    async def set_membership_tier(self, tier: MembershipTier) -> None:
        self._user.membership_tier = tier.value
        await self._session.flush()

    async def create_subscription(
        self,
        *,
        status: SubscriptionStatus,
        period_start: datetime,
        period_end: datetime,
        created_at: datetime,
    ) -> str:
        subscription = Subscription(
            user_id=self._user.id,
            status=status.value,
            payment_method="STRIPE",
            current_period_start=period_start,
            current_period_end=period_end,
            created_at=created_at,
            updated_at=created_at,
        )
        self._session.add(subscription)
        await self._session.flush()
        return str(subscription.id)

    async def update_subscription(
        self,
        subscription_id: str,
        *,
        status: SubscriptionStatus,
        period_end: datetime,
    ) -> None:
        subscription = await self._session.get(Subscription, _to_uuid(subscription_id))
        if subscription is None or subscription.user_id != self._user.id:
            raise LookupError(f"Subscription {subscription_id} not found for account {self.account_id}")
        subscription.status = status.value
        subscription.current_period_end = period_end
        await self._session.flush()

    async def set_metadata_flag(self, key: str, value: str) -> None:
        result = await self._session.execute(
            select(UserMetadata).where(UserMetadata.user_id == self._user.id, UserMetadata.key == key)
        )
        entry = result.scalar_one_or_none()
        if entry is None:
            self._session.add(UserMetadata(user_id=self._user.id, key=key, value=value))
        else:
            entry.value = value
        await self._session.flush()

    async def replace_studio_types(self, studio_types: Sequence[StudioType]) -> None:
        studio = self._user.studio_profile
        if studio is None:
            raise StudioProfileMissingError(self.account_id)

        # delete first: the unit of work would otherwise insert before deleting
        await self._session.execute(
            delete(StudioStudioType)
            .where(StudioStudioType.studio_id == studio.id)
            .execution_options(synchronize_session=False)
        )
        self._session.expire(studio, ["studio_types"])
        for position, studio_type in enumerate(studio_types):
            self._session.add(
                StudioStudioType(studio_id=studio.id, studio_type=StudioType(studio_type).value, position=position)
            )
        await self._session.flush()


class DatabaseAccountStore(AccountStore):
    """Account store backed by the directory's PostgreSQL database."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_candidates(self, query: CandidateQuery) -> list[AccountRecord]:
        stmt = _apply_filters(select(User), query).order_by(StudioProfile.created_at, User.id)
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            accounts = [to_account_record(user) for user in result.scalars().unique().all()]
        logger.debug("Candidate query %s matched %d accounts", query, len(accounts))
        return accounts

    async def count_candidates(self, query: CandidateQuery) -> int:
        stmt = _apply_filters(select(func.count(User.id)).select_from(User), query)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            count = result.scalar_one()
        if query.limit is not None:
            return min(count, query.limit)
        return count

    async def get_account(self, account_id: str) -> AccountRecord | None:
        async with self._session_factory() as session:
            user = await session.get(User, _to_uuid(account_id))
            return to_account_record(user) if user is not None else None

    async def run_in_transaction(
        self,
        account_id: str,
        fn: Callable[[AccountTransaction], Awaitable[T]],
    ) -> T:
        async with self._session_factory() as session:
            async with session.begin():
                user = await session.get(User, _to_uuid(account_id))
                if user is None:
                    raise AccountNotFoundError(account_id)
                return await fn(_DatabaseAccountTransaction(session, user))
