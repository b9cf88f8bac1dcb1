"""Legacy BASIC → PREMIUM migration: preview, execute, rollback.

Legacy accounts (studio created before the cutoff) still on BASIC are moved
to PREMIUM and given a free, six-month, non-paid subscription. Each account
is migrated in its own transaction; failures are counted and the run goes
on. The run is idempotent: migrated accounts are no longer BASIC and drop
out of the candidate set, and a still-valid grant is never extended.

Rollback reverts the tier of migrated accounts that never paid. Any account
with a paid subscription is skipped so a paying customer is never
downgraded. Subscription rows are left in place as history.

Only one instance may run against a database at a time; nothing here
takes a lock.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from membership_engine.membership.legacy import LEGACY_CUTOFF, legacy_grant_end
from membership_engine.membership.markers import to_naive_utc, utcnow
from membership_engine.membership.records import AccountRecord
from membership_engine.membership.tiers import AccountStatus, MembershipTier, SubscriptionStatus
from membership_engine.migration.batch import DEFAULT_BATCH_SIZE, run_in_batches
from membership_engine.migration.confirmation import ConfirmationGate
from membership_engine.migration.report import CandidateSample, MigrationReport, RunMode
from membership_engine.store.base import AccountStore, AccountTransaction, CandidateQuery

logger = logging.getLogger(__name__)

TASK_NAME = "legacy-premium"
DEFAULT_SAMPLE_SIZE = 20


class GrantBucket(str, Enum):
    NEEDS_NEW_GRANT = "needs_new_grant"
    HAS_ACTIVE_GRANT = "has_active_grant"
    NEEDS_RENEWAL = "needs_renewal"


class AccountChange(str, Enum):
    GRANT_CREATED = "grant_created"
    GRANT_EXTENDED = "grant_extended"
    TIER_ONLY = "tier_only"


@dataclass(frozen=True)
class MigrationFilter:
    """Optional narrowing of a run to specific accounts or a maximum count."""

    account_ids: frozenset[str] | None = None
    limit: int | None = None


def classify_grant(account: AccountRecord, now: datetime) -> GrantBucket:
    """Bucket an account by its most recent subscription."""
    latest = account.latest_subscription
    if latest is None or latest.current_period_end is None:
        return GrantBucket.NEEDS_NEW_GRANT
    if to_naive_utc(latest.current_period_end) > to_naive_utc(now):
        return GrantBucket.HAS_ACTIVE_GRANT
    return GrantBucket.NEEDS_RENEWAL


def _scoped(query: CandidateQuery, scope: MigrationFilter | None) -> CandidateQuery:
    if scope is None:
        return query
    return CandidateQuery(
        membership_tier=query.membership_tier,
        status=query.status,
        studio_created_before=query.studio_created_before,
        exclude_roles=query.exclude_roles,
        studio_type=query.studio_type,
        account_ids=scope.account_ids,
        limit=scope.limit,
    )


class LegacyMigrationOrchestrator:
    """Drives the legacy → premium migration against an :class:`AccountStore`."""

    def __init__(
        self,
        store: AccountStore,
        *,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = DEFAULT_BATCH_SIZE,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        environment: str = "DEV",
    ):
        self.store = store
        self.clock = clock
        self.batch_size = batch_size
        self.sample_size = sample_size
        self.environment = environment

    # --- candidate selection ---

    def migration_query(self, scope: MigrationFilter | None = None) -> CandidateQuery:
        return _scoped(
            CandidateQuery(
                membership_tier=MembershipTier.BASIC,
                status=AccountStatus.ACTIVE,
                studio_created_before=LEGACY_CUTOFF,
            ),
            scope,
        )

    def rollback_query(self, scope: MigrationFilter | None = None) -> CandidateQuery:
        return _scoped(
            CandidateQuery(
                membership_tier=MembershipTier.PREMIUM,
                studio_created_before=LEGACY_CUTOFF,
            ),
            scope,
        )

    def _report(self, mode: RunMode) -> MigrationReport:
        return MigrationReport(task=TASK_NAME, mode=mode, environment=self.environment)

    def _classify(
        self, report: MigrationReport, candidates: list[AccountRecord], now: datetime
    ) -> dict[str, GrantBucket]:
        buckets = {bucket.value: 0 for bucket in GrantBucket}
        classified: dict[str, GrantBucket] = {}
        for account in candidates:
            bucket = classify_grant(account, now)
            classified[account.id] = bucket
            buckets[bucket.value] += 1

        report.candidates = len(candidates)
        report.buckets = buckets
        report.sample = [
            CandidateSample(
                account_id=account.id,
                email=account.email,
                studio_created_at=account.studio_created_at,
                bucket=classified[account.id].value,
                latest_period_end=(
                    account.latest_subscription.current_period_end if account.latest_subscription else None
                ),
            )
            for account in candidates[: self.sample_size]
        ]
        return classified

    # --- modes ---

    async def preview(self, scope: MigrationFilter | None = None) -> MigrationReport:
        """Classify candidates without writing anything."""
        now = to_naive_utc(self.clock())
        report = self._report(RunMode.DRY_RUN)
        candidates = await self.store.find_candidates(self.migration_query(scope))
        self._classify(report, candidates, now)
        logger.info(
            "Found %d legacy BASIC accounts with ACTIVE status on %s", report.candidates, self.environment
        )
        return report

    async def execute(
        self,
        scope: MigrationFilter | None = None,
        *,
        batch_size: int | None = None,
        gate: ConfirmationGate | None = None,
    ) -> MigrationReport:
        """Migrate every candidate, one transaction per account."""
        now = to_naive_utc(self.clock())
        report = self._report(RunMode.EXECUTE)
        query = self.migration_query(scope)
        candidates = await self.store.find_candidates(query)
        classified = self._classify(report, candidates, now)

        if not candidates:
            logger.info("Nothing to migrate. All legacy accounts are already PREMIUM or inactive.")
            report.remaining = 0
            return report

        if gate is not None and not await gate.confirm(
            f"You are about to modify {len(candidates)} accounts in {self.environment}."
        ):
            report.aborted = True
            return report

        grant_end = legacy_grant_end(now)

        async def migrate(account: AccountRecord) -> AccountChange:
            bucket = classified[account.id]

            async def apply(tx: AccountTransaction) -> AccountChange:
                await tx.set_membership_tier(MembershipTier.PREMIUM)
                if bucket is GrantBucket.NEEDS_NEW_GRANT:
                    await tx.create_subscription(
                        status=SubscriptionStatus.ACTIVE,
                        period_start=now,
                        period_end=grant_end,
                        created_at=now,
                    )
                    return AccountChange.GRANT_CREATED
                if bucket is GrantBucket.NEEDS_RENEWAL:
                    await tx.update_subscription(
                        account.latest_subscription.id,
                        status=SubscriptionStatus.ACTIVE,
                        period_end=grant_end,
                    )
                    return AccountChange.GRANT_EXTENDED
                return AccountChange.TIER_ONLY

            return await self.store.run_in_transaction(account.id, apply)

        logger.info(
            "Migrating %d accounts in batches of %d", len(candidates), batch_size or self.batch_size
        )
        outcome = await run_in_batches(
            candidates, migrate, batch_size=batch_size or self.batch_size, label=TASK_NAME
        )

        changes = outcome.results()
        report.tier_updated = len(changes)
        report.subscriptions_created = changes.count(AccountChange.GRANT_CREATED)
        report.subscriptions_extended = changes.count(AccountChange.GRANT_EXTENDED)
        report.record_failures(outcome)

        # re-count over this run's selection only
        selected = replace(query, account_ids=frozenset(a.id for a in candidates), limit=None)
        report.remaining = await self.store.count_candidates(selected)
        logger.info(
            "Migration complete: %d updated, %d created, %d extended, %d errors, %d remaining",
            report.tier_updated,
            report.subscriptions_created,
            report.subscriptions_extended,
            report.errors,
            report.remaining,
        )
        return report

    async def rollback(
        self,
        gate: ConfirmationGate,
        scope: MigrationFilter | None = None,
    ) -> MigrationReport:
        """Revert migrated accounts without any paid subscription to BASIC."""
        report = self._report(RunMode.ROLLBACK)
        premium_legacy = await self.store.find_candidates(self.rollback_query(scope))
        candidates = [account for account in premium_legacy if not account.has_paid_subscription]

        report.candidates = len(candidates)
        report.skipped = len(premium_legacy) - len(candidates)
        report.sample = [
            CandidateSample(
                account_id=account.id,
                email=account.email,
                studio_created_at=account.studio_created_at,
                bucket="revert_to_basic",
            )
            for account in candidates[: self.sample_size]
        ]
        logger.info(
            "Found %d PREMIUM legacy accounts without paid subscriptions (skipping %d with paid subscriptions)",
            report.candidates,
            report.skipped,
        )

        if not candidates:
            logger.info("Nothing to roll back.")
            return report

        if not await gate.confirm(
            f"This will revert {len(candidates)} accounts from PREMIUM to BASIC on {self.environment}."
        ):
            report.aborted = True
            return report

        async def revert(account: AccountRecord) -> None:
            async def apply(tx: AccountTransaction) -> None:
                await tx.set_membership_tier(MembershipTier.BASIC)

            await self.store.run_in_transaction(account.id, apply)

        outcome = await run_in_batches(
            candidates, revert, batch_size=self.batch_size, label=f"{TASK_NAME}-rollback"
        )
        report.reverted = len(outcome.succeeded)
        report.record_failures(outcome)
        logger.info("Rollback complete: %d accounts reverted to BASIC, %d errors", report.reverted, report.errors)
        return report
