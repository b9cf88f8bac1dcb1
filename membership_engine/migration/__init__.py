"""Batch jobs over the legacy account population."""

from membership_engine.migration.batch import BatchOutcome, run_in_batches
from membership_engine.migration.confirmation import ConfirmationGate
from membership_engine.migration.grace import VoiceoverGraceOrchestrator
from membership_engine.migration.orchestrator import LegacyMigrationOrchestrator, MigrationFilter
from membership_engine.migration.report import MigrationReport, RunMode, render_report

__all__ = [
    "BatchOutcome",
    "ConfirmationGate",
    "LegacyMigrationOrchestrator",
    "MigrationFilter",
    "MigrationReport",
    "RunMode",
    "VoiceoverGraceOrchestrator",
    "render_report",
    "run_in_batches",
]
