"""Legacy VOICEOVER grace lifecycle.

Two follow-up jobs for legacy accounts that already list as VOICEOVER:

* ``backfill_grace`` starts a 14-day grace period for accounts that have not
  earned the unlock, and records the unlock marker for accounts that have.
* ``enforce_removal`` removes VOICEOVER once the grace period has run out,
  falling back to HOME when VOICEOVER was the studio's only category.

Both classify accounts with :func:`evaluate_legacy_voiceover` and are safe to
re-run: already-processed accounts are skipped.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum

from membership_engine.membership.legacy import (
    LEGACY_CUTOFF,
    LegacyVoiceoverStatus,
    UnlockReason,
    evaluate_legacy_voiceover,
    grace_period_end,
)
from membership_engine.membership.markers import (
    GraceMarker,
    UnlockMarker,
    parse_legacy_markers,
    serialize_marker,
    to_naive_utc,
    utcnow,
)
from membership_engine.membership.records import AccountRecord
from membership_engine.membership.tiers import (
    FALLBACK_STUDIO_TYPE,
    RESTRICTED_STUDIO_TYPE,
    AccountRole,
    AccountStatus,
)
from membership_engine.migration.batch import DEFAULT_BATCH_SIZE, run_in_batches
from membership_engine.migration.confirmation import ConfirmationGate
from membership_engine.migration.orchestrator import DEFAULT_SAMPLE_SIZE, MigrationFilter
from membership_engine.migration.report import CandidateSample, MigrationReport, RunMode
from membership_engine.store.base import AccountStore, AccountTransaction, CandidateQuery

logger = logging.getLogger(__name__)

GRACE_TASK_NAME = "voiceover-grace"
ENFORCE_TASK_NAME = "voiceover-enforce"


class GraceBucket(str, Enum):
    ALREADY_UNLOCKED = "already_unlocked"
    ALREADY_IN_GRACE = "already_in_grace"
    QUALIFIES_BY_PAYMENT = "qualifies_by_payment"
    NEEDS_GRACE = "needs_grace"


class EnforceBucket(str, Enum):
    REMOVE_VOICEOVER = "remove_voiceover"
    GRACE_ACTIVE = "grace_active"
    NO_GRACE_STARTED = "no_grace_started"
    UNLOCKED = "unlocked"


def classify_for_grace(account: AccountRecord, now: datetime) -> GraceBucket:
    markers = parse_legacy_markers(account.metadata)
    if markers.unlock is not None:
        return GraceBucket.ALREADY_UNLOCKED
    if markers.grace is not None:
        return GraceBucket.ALREADY_IN_GRACE
    status = evaluate_legacy_voiceover(account, now)
    if status.unlock_reason is UnlockReason.QUALIFYING_SUBSCRIPTION:
        return GraceBucket.QUALIFIES_BY_PAYMENT
    return GraceBucket.NEEDS_GRACE


def classify_for_enforcement(status: LegacyVoiceoverStatus) -> EnforceBucket:
    if not status.should_block_restricted_capability:
        return EnforceBucket.UNLOCKED
    if status.should_revoke_existing_grant:
        return EnforceBucket.REMOVE_VOICEOVER
    if status.grace_active:
        return EnforceBucket.GRACE_ACTIVE
    return EnforceBucket.NO_GRACE_STARTED


class VoiceoverGraceOrchestrator:
    """Starts and enforces the legacy VOICEOVER grace period."""

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

    def voiceover_query(self, scope: MigrationFilter | None = None) -> CandidateQuery:
        return CandidateQuery(
            status=AccountStatus.ACTIVE,
            studio_created_before=LEGACY_CUTOFF,
            exclude_roles=frozenset({AccountRole.ADMIN}),
            studio_type=RESTRICTED_STUDIO_TYPE,
            account_ids=scope.account_ids if scope else None,
            limit=scope.limit if scope else None,
        )

    def _sample(self, accounts: list[AccountRecord], bucket_of: dict[str, Enum]) -> list[CandidateSample]:
        return [
            CandidateSample(
                account_id=account.id,
                email=account.email,
                studio_created_at=account.studio_created_at,
                bucket=bucket_of[account.id].value,
                detail="types: " + ", ".join(t.value for t in account.studio_types),
            )
            for account in accounts[: self.sample_size]
        ]

    async def backfill_grace(
        self,
        *,
        execute: bool = False,
        gate: ConfirmationGate | None = None,
        scope: MigrationFilter | None = None,
    ) -> MigrationReport:
        """Start grace periods and record earned unlocks for VOICEOVER listings."""
        now = to_naive_utc(self.clock())
        report = MigrationReport(
            task=GRACE_TASK_NAME,
            mode=RunMode.EXECUTE if execute else RunMode.DRY_RUN,
            environment=self.environment,
        )
        candidates = await self.store.find_candidates(self.voiceover_query(scope))

        buckets = {bucket.value: 0 for bucket in GraceBucket}
        bucket_of: dict[str, GraceBucket] = {}
        for account in candidates:
            bucket = classify_for_grace(account, now)
            bucket_of[account.id] = bucket
            buckets[bucket.value] += 1
        report.candidates = len(candidates)
        report.buckets = buckets
        report.sample = self._sample(candidates, bucket_of)
        logger.info("Found %d legacy accounts with VOICEOVER type", report.candidates)

        to_write = [
            account
            for account in candidates
            if bucket_of[account.id] in (GraceBucket.NEEDS_GRACE, GraceBucket.QUALIFIES_BY_PAYMENT)
        ]
        if not execute or not to_write:
            return report

        if gate is not None and not await gate.confirm(
            f"You are about to modify {len(to_write)} accounts in {self.environment}.\n"
            f"  - {buckets[GraceBucket.NEEDS_GRACE.value]} will have grace periods started\n"
            f"  - {buckets[GraceBucket.QUALIFIES_BY_PAYMENT.value]} will have unlock metadata set"
        ):
            report.aborted = True
            return report

        grace = GraceMarker(ends_at=grace_period_end(now), started_at=now)
        unlock = UnlockMarker(unlocked_at=now)
        report.grace_ends_at = grace.ends_at

        async def write_marker(account: AccountRecord) -> GraceBucket:
            bucket = bucket_of[account.id]
            entries = serialize_marker(grace if bucket is GraceBucket.NEEDS_GRACE else unlock)

            async def apply(tx: AccountTransaction) -> GraceBucket:
                for key, value in entries.items():
                    await tx.set_metadata_flag(key, value)
                return bucket

            return await self.store.run_in_transaction(account.id, apply)

        outcome = await run_in_batches(to_write, write_marker, batch_size=self.batch_size, label=GRACE_TASK_NAME)
        written = outcome.results()
        report.grace_started = written.count(GraceBucket.NEEDS_GRACE)
        report.unlocks_recorded = written.count(GraceBucket.QUALIFIES_BY_PAYMENT)
        report.record_failures(outcome)
        logger.info(
            "Grace backfill complete: %d grace periods started, %d unlocks recorded, %d errors",
            report.grace_started,
            report.unlocks_recorded,
            report.errors,
        )
        return report

    async def enforce_removal(
        self,
        *,
        execute: bool = False,
        gate: ConfirmationGate | None = None,
        scope: MigrationFilter | None = None,
    ) -> MigrationReport:
        """Remove VOICEOVER from accounts whose grace period has expired."""
        now = to_naive_utc(self.clock())
        report = MigrationReport(
            task=ENFORCE_TASK_NAME,
            mode=RunMode.EXECUTE if execute else RunMode.DRY_RUN,
            environment=self.environment,
        )
        listed = await self.store.find_candidates(self.voiceover_query(scope))

        buckets = {bucket.value: 0 for bucket in EnforceBucket}
        bucket_of: dict[str, EnforceBucket] = {}
        for account in listed:
            bucket = classify_for_enforcement(evaluate_legacy_voiceover(account, now))
            bucket_of[account.id] = bucket
            buckets[bucket.value] += 1

        candidates = [a for a in listed if bucket_of[a.id] is EnforceBucket.REMOVE_VOICEOVER]
        report.candidates = len(candidates)
        report.buckets = buckets
        report.sample = self._sample(candidates, bucket_of)
        logger.info("Found %d accounts with expired grace and no unlock", report.candidates)

        if not execute or not candidates:
            return report

        if gate is not None and not await gate.confirm(
            f"You are about to remove VOICEOVER from {len(candidates)} accounts in {self.environment}."
        ):
            report.aborted = True
            return report

        async def remove_voiceover(account: AccountRecord) -> bool | None:
            # the listing may have changed since selection
            current = await self.store.get_account(account.id)
            if current is None or RESTRICTED_STUDIO_TYPE not in current.studio_types:
                logger.info("SKIP %s: VOICEOVER already removed", account.id)
                return None
            remaining = [t for t in current.studio_types if t is not RESTRICTED_STUDIO_TYPE]

            async def apply(tx: AccountTransaction) -> bool:
                await tx.replace_studio_types(remaining or [FALLBACK_STUDIO_TYPE])
                return not remaining

            return await self.store.run_in_transaction(account.id, apply)

        outcome = await run_in_batches(
            candidates, remove_voiceover, batch_size=self.batch_size, label=ENFORCE_TASK_NAME
        )
        results = outcome.results()
        report.voiceover_removed = sum(1 for result in results if result is not None)
        report.home_fallbacks = sum(1 for result in results if result is True)
        report.skipped = sum(1 for result in results if result is None)
        report.record_failures(outcome)
        logger.info(
            "Enforcement complete: %d VOICEOVER removed, %d HOME fallbacks, %d errors",
            report.voiceover_removed,
            report.home_fallbacks,
            report.errors,
        )
        return report
