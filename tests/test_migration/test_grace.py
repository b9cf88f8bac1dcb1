"""Tests for the VOICEOVER grace backfill and post-grace enforcement."""

from datetime import datetime, timedelta

from membership_engine.membership.legacy import evaluate_legacy_voiceover
from membership_engine.membership.markers import (
    GRACE_ENDS_AT_KEY,
    GRACE_STARTED_AT_KEY,
    UNLOCKED_AT_KEY,
)
from membership_engine.membership.records import AccountRecord, PaymentRecord, SubscriptionRecord
from membership_engine.membership.tiers import AccountRole, MembershipTier, StudioType
from membership_engine.migration.confirmation import ConfirmationGate
from membership_engine.migration.grace import (
    EnforceBucket,
    GraceBucket,
    VoiceoverGraceOrchestrator,
    classify_for_enforcement,
    classify_for_grace,
)

NOW = datetime(2026, 3, 6)


def _voiceover_account(account_id: str, **overrides) -> AccountRecord:
    fields = dict(
        id=account_id,
        email=f"{account_id}@test.com",
        membership_tier=MembershipTier.PREMIUM,
        studio_created_at=datetime(2025, 6, 1),
        studio_types=(StudioType.VOICEOVER,),
    )
    fields.update(overrides)
    return AccountRecord(**fields)


def _annual_paid() -> SubscriptionRecord:
    return SubscriptionRecord(
        id="annual",
        created_at=datetime(2025, 3, 1),
        stripe_subscription_id="sub_live_annual",
        current_period_start=datetime(2025, 3, 1),
        current_period_end=datetime(2026, 3, 1),
    )


def _orchestrator(store, now: datetime = NOW) -> VoiceoverGraceOrchestrator:
    return VoiceoverGraceOrchestrator(store, clock=lambda: now)


class TestClassifyForGrace:
    """Bucketing of VOICEOVER listings."""

    def test_buckets(self):
        unlocked = _voiceover_account("u", metadata={UNLOCKED_AT_KEY: "2026-01-01T00:00:00.000Z"})
        in_grace = _voiceover_account("g", metadata={GRACE_ENDS_AT_KEY: "2026-03-10T00:00:00.000Z"})
        payer = _voiceover_account("p", payments=(PaymentRecord("pay"),), subscriptions=(_annual_paid(),))
        plain = _voiceover_account("n")

        assert classify_for_grace(unlocked, NOW) is GraceBucket.ALREADY_UNLOCKED
        assert classify_for_grace(in_grace, NOW) is GraceBucket.ALREADY_IN_GRACE
        assert classify_for_grace(payer, NOW) is GraceBucket.QUALIFIES_BY_PAYMENT
        assert classify_for_grace(plain, NOW) is GraceBucket.NEEDS_GRACE


class TestBackfillGrace:
    """Starting grace periods and recording earned unlocks."""

    async def test_dry_run_writes_nothing(self, fake_store):
        fake_store.add(_voiceover_account("a"))
        report = await _orchestrator(fake_store).backfill_grace()
        assert report.buckets[GraceBucket.NEEDS_GRACE.value] == 1
        assert fake_store.commits == 0

    async def test_execute_writes_grace_and_unlock(self, fake_store):
        fake_store.add(
            _voiceover_account("plain"),
            _voiceover_account("payer", payments=(PaymentRecord("pay"),), subscriptions=(_annual_paid(),)),
        )
        report = await _orchestrator(fake_store).backfill_grace(execute=True)

        plain = fake_store.accounts["plain"]
        assert plain.metadata[GRACE_STARTED_AT_KEY] == "2026-03-06T00:00:00.000Z"
        assert plain.metadata[GRACE_ENDS_AT_KEY] == "2026-03-20T00:00:00.000Z"
        assert UNLOCKED_AT_KEY not in plain.metadata

        payer = fake_store.accounts["payer"]
        assert payer.metadata[UNLOCKED_AT_KEY] == "2026-03-06T00:00:00.000Z"
        assert GRACE_ENDS_AT_KEY not in payer.metadata

        assert report.grace_started == 1
        assert report.unlocks_recorded == 1
        assert report.grace_ends_at == datetime(2026, 3, 20)

        status = evaluate_legacy_voiceover(plain, NOW + timedelta(days=1))
        assert status.grace_active is True

    async def test_skips_admins_and_other_categories(self, fake_store):
        fake_store.add(
            _voiceover_account("admin", role=AccountRole.ADMIN),
            _voiceover_account("home", studio_types=(StudioType.HOME,)),
            _voiceover_account("modern", studio_created_at=datetime(2026, 2, 1)),
        )
        report = await _orchestrator(fake_store).backfill_grace(execute=True)
        assert report.candidates == 0
        assert fake_store.commits == 0

    async def test_rerun_is_a_no_op(self, fake_store):
        fake_store.add(_voiceover_account("a"))
        orchestrator = _orchestrator(fake_store)
        await orchestrator.backfill_grace(execute=True)
        commits = fake_store.commits

        later = _orchestrator(fake_store, now=NOW + timedelta(days=3))
        report = await later.backfill_grace(execute=True)
        assert report.buckets[GraceBucket.ALREADY_IN_GRACE.value] == 1
        assert report.grace_started == 0
        assert fake_store.commits == commits
        assert fake_store.accounts["a"].metadata[GRACE_ENDS_AT_KEY] == "2026-03-20T00:00:00.000Z"

    async def test_declined_gate(self, fake_store):
        fake_store.add(_voiceover_account("a"))
        gate = ConfirmationGate("START GRACE", "execute", input_fn=lambda prompt: "")
        report = await _orchestrator(fake_store).backfill_grace(execute=True, gate=gate)
        assert report.aborted is True
        assert fake_store.commits == 0


class TestEnforceRemoval:
    """Removing VOICEOVER after the grace period."""

    def test_classify_for_enforcement(self):
        expired = _voiceover_account("e", metadata={GRACE_ENDS_AT_KEY: "2026-03-20T00:00:00.000Z"})
        at = datetime(2026, 3, 21)
        assert classify_for_enforcement(evaluate_legacy_voiceover(expired, at)) is EnforceBucket.REMOVE_VOICEOVER
        assert (
            classify_for_enforcement(evaluate_legacy_voiceover(expired, NOW)) is EnforceBucket.GRACE_ACTIVE
        )
        assert (
            classify_for_enforcement(evaluate_legacy_voiceover(_voiceover_account("n"), at))
            is EnforceBucket.NO_GRACE_STARTED
        )

    async def test_voiceover_only_falls_back_to_home(self, fake_store):
        fake_store.add(_voiceover_account("a", metadata={GRACE_ENDS_AT_KEY: "2026-03-20T00:00:00.000Z"}))
        report = await _orchestrator(fake_store, now=datetime(2026, 3, 21)).enforce_removal(execute=True)

        assert fake_store.accounts["a"].studio_types == (StudioType.HOME,)
        assert report.voiceover_removed == 1
        assert report.home_fallbacks == 1

    async def test_other_categories_are_kept(self, fake_store):
        fake_store.add(
            _voiceover_account(
                "a",
                studio_types=(StudioType.VOICEOVER, StudioType.PODCAST),
                metadata={GRACE_ENDS_AT_KEY: "2026-03-20T00:00:00.000Z"},
            )
        )
        report = await _orchestrator(fake_store, now=datetime(2026, 3, 21)).enforce_removal(execute=True)
        assert fake_store.accounts["a"].studio_types == (StudioType.PODCAST,)
        assert report.home_fallbacks == 0

    async def test_active_grace_and_unlocks_are_untouched(self, fake_store):
        fake_store.add(
            _voiceover_account("grace", metadata={GRACE_ENDS_AT_KEY: "2026-04-01T00:00:00.000Z"}),
            _voiceover_account(
                "unlocked",
                metadata={
                    GRACE_ENDS_AT_KEY: "2026-03-01T00:00:00.000Z",
                    UNLOCKED_AT_KEY: "2026-03-02T00:00:00.000Z",
                },
            ),
        )
        report = await _orchestrator(fake_store, now=datetime(2026, 3, 21)).enforce_removal(execute=True)
        assert report.candidates == 0
        assert report.buckets[EnforceBucket.GRACE_ACTIVE.value] == 1
        assert report.buckets[EnforceBucket.UNLOCKED.value] == 1
        assert fake_store.commits == 0

    async def test_dry_run_writes_nothing(self, fake_store):
        fake_store.add(_voiceover_account("a", metadata={GRACE_ENDS_AT_KEY: "2026-03-20T00:00:00.000Z"}))
        report = await _orchestrator(fake_store, now=datetime(2026, 3, 21)).enforce_removal()
        assert report.candidates == 1
        assert fake_store.accounts["a"].studio_types == (StudioType.VOICEOVER,)
