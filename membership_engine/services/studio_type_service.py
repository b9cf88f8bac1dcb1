"""Studio type service: the write path for listing categories."""

import logging
from collections.abc import Iterable
from datetime import datetime

from membership_engine.errors import AccountNotFoundError, StudioProfileMissingError
from membership_engine.membership.enforcement import enforce_studio_types
from membership_engine.membership.legacy import (
    LegacyVoiceoverStatus,
    UnlockReason,
    evaluate_legacy_voiceover,
)
from membership_engine.membership.markers import (
    UnlockMarker,
    parse_legacy_markers,
    serialize_marker,
    to_naive_utc,
    utcnow,
)
from membership_engine.membership.records import AccountRecord
from membership_engine.membership.tiers import StudioType
from membership_engine.store.base import AccountStore, AccountTransaction

logger = logging.getLogger(__name__)


def _earned_unlock_entries(
    account: AccountRecord, status: LegacyVoiceoverStatus, now: datetime
) -> dict[str, str]:
    if status.unlock_reason is not UnlockReason.QUALIFYING_SUBSCRIPTION:
        return {}
    if parse_legacy_markers(account.metadata).unlock is not None:
        return {}
    return serialize_marker(UnlockMarker(unlocked_at=to_naive_utc(now)))


async def persist_earned_unlock(
    store: AccountStore,
    account: AccountRecord,
    status: LegacyVoiceoverStatus,
    now: datetime,
) -> bool:
    """Record the unlock marker for an account that earned it by paying.

    Returns True when a marker was written. Accounts unlocked by an existing
    marker, or not unlocked at all, are left untouched.
    """
    entries = _earned_unlock_entries(account, status, now)
    if not entries:
        return False

    for key, value in entries.items():
        await store.upsert_metadata_flag(account.id, key, value)
    logger.info("Recorded earned VOICEOVER unlock for account %s", account.id)
    return True


async def update_studio_types(
    store: AccountStore,
    account_id: str,
    requested: Iterable[StudioType | str],
    now: datetime | None = None,
) -> list[StudioType]:
    """Store the allowed subset of ``requested`` as the account's studio types.

    The earned unlock marker (if due) and the new categories are written in
    the same account transaction. Returns the list that was stored.
    """
    now = to_naive_utc(now) if now is not None else utcnow()
    account = await store.get_account(account_id)
    if account is None:
        raise AccountNotFoundError(account_id)
    if not account.has_studio:
        raise StudioProfileMissingError(account_id)

    status = evaluate_legacy_voiceover(account, now)
    requested = list(requested)
    allowed = enforce_studio_types(requested, account.membership_tier, status)
    unlock_entries = _earned_unlock_entries(account, status, now)

    async def apply(tx: AccountTransaction) -> list[StudioType]:
        for key, value in unlock_entries.items():
            await tx.set_metadata_flag(key, value)
        await tx.replace_studio_types(allowed)
        return allowed

    stored = await store.run_in_transaction(account_id, apply)
    if len(stored) != len(requested):
        logger.info(
            "Reduced studio types for account %s from %s to %s",
            account_id,
            [str(getattr(t, "value", t)) for t in requested],
            [t.value for t in stored],
        )
    return stored
