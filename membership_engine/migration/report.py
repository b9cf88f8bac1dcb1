"""Structured run reports and their human-readable rendering."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from membership_engine.migration.batch import BatchOutcome


class RunMode(str, Enum):
    DRY_RUN = "dry-run"
    EXECUTE = "execute"
    ROLLBACK = "rollback"


class CandidateSample(BaseModel):
    """One candidate shown to the operator before anything is written."""

    account_id: str
    email: str
    studio_created_at: datetime | None
    bucket: str
    latest_period_end: datetime | None = None
    detail: str | None = None


class AccountFailure(BaseModel):
    account_id: str
    email: str
    error: str


class MigrationReport(BaseModel):
    """Result of a preview, execute, or rollback run."""

    task: str
    mode: RunMode
    environment: str
    candidates: int = 0
    buckets: dict[str, int] = Field(default_factory=dict)
    sample: list[CandidateSample] = Field(default_factory=list)

    # Outcomes
    tier_updated: int = 0
    subscriptions_created: int = 0
    subscriptions_extended: int = 0
    reverted: int = 0
    grace_started: int = 0
    unlocks_recorded: int = 0
    voiceover_removed: int = 0
    home_fallbacks: int = 0
    skipped: int = 0
    failures: list[AccountFailure] = Field(default_factory=list)

    remaining: int | None = None  # candidates left after execute; 0 on full success
    grace_ends_at: datetime | None = None
    aborted: bool = False

    @property
    def errors(self) -> int:
        return len(self.failures)

    def record_failures(self, outcome: BatchOutcome) -> None:
        self.failures.extend(
            AccountFailure(account_id=account.id, email=account.email, error=str(exc) or type(exc).__name__)
            for account, exc in outcome.failed
        )


def _date(value: datetime | None) -> str:
    return value.date().isoformat() if value is not None else "N/A"


_OUTCOME_LABELS: dict[str, str] = {
    "tier_updated": "Tier updated to PREMIUM",
    "subscriptions_created": "Subscriptions created",
    "subscriptions_extended": "Subscriptions extended",
    "reverted": "Reverted to BASIC",
    "grace_started": "Grace periods started",
    "unlocks_recorded": "Unlock metadata set",
    "voiceover_removed": "VOICEOVER removed",
    "home_fallbacks": "HOME fallbacks added",
    "skipped": "Skipped",
}

# Outcome counters printed for each task, in order.
_TASK_OUTCOMES: dict[str, tuple[str, ...]] = {
    "legacy-premium": ("tier_updated", "subscriptions_created", "subscriptions_extended"),
    "legacy-premium-rollback": ("reverted", "skipped"),
    "voiceover-grace": ("grace_started", "unlocks_recorded"),
    "voiceover-enforce": ("voiceover_removed", "home_fallbacks", "skipped"),
}


def render_report(report: MigrationReport) -> str:
    """Render the summary printed at the end of every run."""
    width = 80
    lines = [
        "=" * width,
        f"{report.task} ({report.mode.value.upper()}) on {report.environment}",
        "=" * width,
        f"Candidates: {report.candidates}",
    ]

    if report.buckets:
        lines.append("Breakdown:")
        label_width = max(len(name) for name in report.buckets) + 1
        for name, count in report.buckets.items():
            lines.append(f"  - {name + ':':<{label_width}} {count}")

    if report.sample:
        lines.append("Sample:")
        for item in report.sample:
            parts = [item.email or item.account_id, f"studio: {_date(item.studio_created_at)}", item.bucket]
            if item.latest_period_end is not None:
                parts.append(f"sub expires {_date(item.latest_period_end)}")
            if item.detail:
                parts.append(item.detail)
            lines.append("  " + " | ".join(parts))
        if report.candidates > len(report.sample):
            lines.append(f"  ... and {report.candidates - len(report.sample)} more")

    if report.aborted:
        lines.append("Aborted by operator. No changes were made.")
        return "\n".join(lines)

    if report.mode is RunMode.DRY_RUN:
        lines.append("DRY RUN: no changes were made. Re-run with --execute to apply.")
        return "\n".join(lines)

    outcome_key = report.task
    if report.mode is RunMode.ROLLBACK:
        outcome_key = f"{report.task}-rollback"
    lines.append("Summary:")
    for name in _TASK_OUTCOMES.get(outcome_key, ()):
        lines.append(f"  {_OUTCOME_LABELS[name] + ':':<28}{getattr(report, name)}")
    lines.append(f"  {'Errors:':<28}{report.errors}")

    if report.grace_ends_at is not None:
        lines.append(f"  {'Grace expires at:':<28}{report.grace_ends_at.isoformat()}")

    for failure in report.failures:
        lines.append(f"  ERROR {failure.account_id} ({failure.email}): {failure.error}")

    if report.remaining is not None:
        lines.append(f"Remaining candidates: {report.remaining}")
        if report.remaining == 0:
            lines.append("All candidates have been processed.")
        else:
            lines.append(f"{report.remaining} candidates were not converted (check errors above).")

    return "\n".join(lines)
