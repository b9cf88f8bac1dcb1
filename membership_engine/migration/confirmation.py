"""Operator confirmation before destructive runs."""

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)

MIGRATE_PRODUCTION_PHRASE = "MIGRATE PRODUCTION"
ROLLBACK_PHRASE = "ROLLBACK"
START_GRACE_PHRASE = "START GRACE"
REMOVE_VOICEOVER_PHRASE = "REMOVE VOICEOVER"


class ConfirmationGate:
    """Asks the operator to type an exact phrase before a run mutates data.

    ``input_fn`` defaults to :func:`input`; tests pass a stub instead of
    driving stdin.
    """

    def __init__(self, phrase: str, mode: str, input_fn: Callable[[str], str] = input):
        self.phrase = phrase
        self.mode = mode
        self._input_fn = input_fn

    async def confirm(self, summary: str) -> bool:
        prompt = f"\n{summary}\nType \"{self.phrase}\" to confirm: "
        try:
            answer = await asyncio.to_thread(self._input_fn, prompt)
        except EOFError:
            answer = ""
        confirmed = answer == self.phrase
        if not confirmed:
            logger.warning("Confirmation for %s not given; aborting without changes", self.mode)
        return confirmed

    def __repr__(self) -> str:
        return f"<ConfirmationGate mode={self.mode!r} phrase={self.phrase!r}>"
