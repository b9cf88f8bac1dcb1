"""Operator entry point for the legacy membership jobs.

Usage:
    legacy-membership --dry-run
    legacy-membership --execute --production
    legacy-membership --rollback --production
    legacy-membership --task voiceover-grace --execute
    legacy-membership --task voiceover-enforce --execute --production

Dry run is the default. ``--production`` reads ``.env.production``, anything
else reads ``.env.local``; the run is refused when both point at the same
database.
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Callable, Sequence

from membership_engine.config import resolve_target_settings
from membership_engine.database import create_engine_from_settings, create_session_factory
from membership_engine.errors import ConfigurationError
from membership_engine.migration.confirmation import (
    MIGRATE_PRODUCTION_PHRASE,
    REMOVE_VOICEOVER_PHRASE,
    ROLLBACK_PHRASE,
    START_GRACE_PHRASE,
    ConfirmationGate,
)
from membership_engine.migration.grace import (
    ENFORCE_TASK_NAME,
    GRACE_TASK_NAME,
    VoiceoverGraceOrchestrator,
)
from membership_engine.migration.orchestrator import (
    TASK_NAME as LEGACY_PREMIUM_TASK,
    LegacyMigrationOrchestrator,
    MigrationFilter,
)
from membership_engine.migration.report import MigrationReport, RunMode, render_report
from membership_engine.store.base import AccountStore
from membership_engine.store.database import DatabaseAccountStore

logger = logging.getLogger(__name__)

TASKS = (LEGACY_PREMIUM_TASK, GRACE_TASK_NAME, ENFORCE_TASK_NAME)
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

_EXECUTE_PHRASES = {
    LEGACY_PREMIUM_TASK: MIGRATE_PRODUCTION_PHRASE,
    GRACE_TASK_NAME: START_GRACE_PHRASE,
    ENFORCE_TASK_NAME: REMOVE_VOICEOVER_PHRASE,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="legacy-membership",
        description="Legacy membership migration and VOICEOVER grace jobs.",
    )

    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--dry-run",
        dest="mode",
        action="store_const",
        const=RunMode.DRY_RUN,
        help="Preview candidates without writing anything (default)",
    )
    mode.add_argument(
        "--execute", dest="mode", action="store_const", const=RunMode.EXECUTE, help="Apply changes"
    )
    mode.add_argument(
        "--rollback",
        dest="mode",
        action="store_const",
        const=RunMode.ROLLBACK,
        help="Revert migrated accounts without paid subscriptions to BASIC",
    )
    parser.set_defaults(mode=RunMode.DRY_RUN)

    parser.add_argument("--task", choices=TASKS, default=LEGACY_PREMIUM_TASK, help="Job to run")

    target = parser.add_mutually_exclusive_group()
    target.add_argument(
        "--production", action="store_true", help="Target the database in .env.production"
    )
    target.add_argument(
        "--dev",
        dest="production",
        action="store_false",
        help="Target the database in .env.local (default)",
    )

    parser.add_argument("--env-dir", default=".", help="Directory holding the env files")
    parser.add_argument("--batch-size", type=int, default=None, help="Accounts per batch")
    parser.add_argument("--sample-size", type=int, default=None, help="Candidates shown in the preview")
    parser.add_argument(
        "--account-id",
        dest="account_ids",
        action="append",
        default=None,
        help="Limit the run to this account (repeatable)",
    )
    parser.add_argument("--limit", type=int, default=None, help="Process at most this many accounts")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        choices=LOG_LEVELS,
        default=None,
        help="Logging level (default from settings)",
    )
    return parser


def _validate(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    if args.mode is RunMode.ROLLBACK and args.task != LEGACY_PREMIUM_TASK:
        parser.error(f"--rollback is only supported for --task {LEGACY_PREMIUM_TASK}")
    for name in ("batch_size", "sample_size", "limit"):
        value = getattr(args, name)
        if value is not None and value < 1:
            parser.error(f"--{name.replace('_', '-')} must be a positive integer")


async def run_task(
    args: argparse.Namespace,
    store: AccountStore,
    *,
    batch_size: int,
    sample_size: int,
    input_fn: Callable[[str], str] = input,
) -> MigrationReport:
    """Dispatch the selected task and mode against ``store``."""
    environment = "PRODUCTION" if args.production else "DEV"
    scope = None
    if args.account_ids or args.limit:
        scope = MigrationFilter(
            account_ids=frozenset(args.account_ids) if args.account_ids else None,
            limit=args.limit,
        )

    execute_gate = None
    if args.production:
        execute_gate = ConfirmationGate(_EXECUTE_PHRASES[args.task], args.mode.value, input_fn)

    options = dict(batch_size=batch_size, sample_size=sample_size, environment=environment)
    if args.task == LEGACY_PREMIUM_TASK:
        orchestrator = LegacyMigrationOrchestrator(store, **options)
        if args.mode is RunMode.ROLLBACK:
            return await orchestrator.rollback(
                ConfirmationGate(ROLLBACK_PHRASE, args.mode.value, input_fn), scope
            )
        if args.mode is RunMode.EXECUTE:
            return await orchestrator.execute(scope, gate=execute_gate)
        return await orchestrator.preview(scope)

    grace = VoiceoverGraceOrchestrator(store, **options)
    execute = args.mode is RunMode.EXECUTE
    if args.task == GRACE_TASK_NAME:
        return await grace.backfill_grace(execute=execute, gate=execute_gate, scope=scope)
    return await grace.enforce_removal(execute=execute, gate=execute_gate, scope=scope)


async def main(argv: Sequence[str] | None = None, input_fn: Callable[[str], str] = input) -> int:
    """Run the CLI and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    _validate(parser, args)

    logging.basicConfig(
        level=(args.log_level or "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = resolve_target_settings(args.production, args.env_dir)
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1

    if args.log_level is None:
        logging.getLogger().setLevel(settings.log_level.upper())
    logger.info("Environment: %s", "PRODUCTION" if args.production else "DEV")

    engine = create_engine_from_settings(settings)
    try:
        store = DatabaseAccountStore(create_session_factory(engine))
        report = await run_task(
            args,
            store,
            batch_size=args.batch_size or settings.batch_size,
            sample_size=args.sample_size or settings.sample_size,
            input_fn=input_fn,
        )
    except ConfigurationError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    except Exception:
        logger.exception("Run failed")
        return 1
    finally:
        await engine.dispose()

    print(report.model_dump_json(indent=2) if args.json else render_report(report))
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
