"""Continue-on-error batch runner."""

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from membership_engine.membership.records import AccountRecord

logger = logging.getLogger(__name__)

R = TypeVar("R")

DEFAULT_BATCH_SIZE = 50


@dataclass
class BatchOutcome(Generic[R]):
    """Per-account results of a batch run."""

    succeeded: list[tuple[AccountRecord, R]] = field(default_factory=list)
    failed: list[tuple[AccountRecord, Exception]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.failed)

    def results(self) -> list[R]:
        return [result for _, result in self.succeeded]


async def run_in_batches(
    accounts: Sequence[AccountRecord],
    worker: Callable[[AccountRecord], Awaitable[R]],
    *,
    batch_size: int = DEFAULT_BATCH_SIZE,
    label: str = "batch",
) -> BatchOutcome[R]:
    """Run ``worker`` for every account, ``batch_size`` accounts at a time.

    A failing account is logged and recorded in ``failed``; the run carries
    on with the next account and nothing is re-raised.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")

    outcome: BatchOutcome[R] = BatchOutcome()
    total = len(accounts)

    for start in range(0, total, batch_size):
        batch = accounts[start : start + batch_size]
        for account in batch:
            try:
                result = await worker(account)
            except Exception as exc:
                logger.error(
                    "[%s] Failed for account %s (%s): %s",
                    label,
                    account.id,
                    account.email or "no email",
                    exc,
                    exc_info=logger.isEnabledFor(logging.DEBUG),
                )
                outcome.failed.append((account, exc))
            else:
                outcome.succeeded.append((account, result))

        logger.info("[%s] Progress: %d/%d accounts processed", label, outcome.processed, total)

    return outcome
