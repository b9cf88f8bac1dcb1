"""Legacy VOICEOVER entitlement evaluation.

Accounts whose studio was created before :data:`LEGACY_CUTOFF` were moved
onto a free, time-boxed Premium grant. That grant does not include the
VOICEOVER listing category: a legacy account only lists as VOICEOVER after
it pays for a long (12-month) subscription, or after someone records an
unlock marker for it.

:func:`evaluate_legacy_voiceover` is a pure function of an
:class:`~membership_engine.membership.records.AccountRecord` and the current
time. It walks :data:`DECISION_TABLE` top to bottom and returns the outcome of
the first rule whose predicate matches. Rule order *is* precedence:

1. ``unrestricted``: no account, admins, accounts without a legacy studio
2. ``unlock_marker``: a persisted unlock, wins over any grace marker
3. ``earned_unlock``: a payment plus a qualifying paid subscription
4. ``restricted``: everything else, with the grace window computed

The earned unlock is detected on every call but never written here; see
:func:`membership_engine.services.studio_type_service.persist_earned_unlock`.
"""

import calendar
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from functools import cached_property

from membership_engine.membership.markers import LegacyMarkers, parse_legacy_markers, to_naive_utc
from membership_engine.membership.records import AccountRecord, SubscriptionRecord

LEGACY_CUTOFF = datetime(2026, 1, 1)  # naive UTC
GRACE_PERIOD_DAYS = 14
# A normal 12-month renewal, with slack for early renewals and short months.
MIN_QUALIFYING_DAYS = 335
LEGACY_GRANT_MONTHS = 6

_SECONDS_PER_DAY = 60 * 60 * 24


class UnlockReason(str, Enum):
    MARKER = "marker"
    QUALIFYING_SUBSCRIPTION = "qualifying_subscription"


@dataclass(frozen=True)
class LegacyVoiceoverStatus:
    """Entitlement state of one account at one instant."""

    is_legacy: bool = False
    is_restricted: bool = False
    has_unlock: bool = False
    grace_active: bool = False
    grace_ends_at: datetime | None = None
    should_block_restricted_capability: bool = False
    should_revoke_existing_grant: bool = False
    unlock_reason: UnlockReason | None = None


UNRESTRICTED = LegacyVoiceoverStatus()


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the end of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def grace_period_end(now: datetime) -> datetime:
    return to_naive_utc(now) + timedelta(days=GRACE_PERIOD_DAYS)


def legacy_grant_end(now: datetime) -> datetime:
    return add_months(to_naive_utc(now), LEGACY_GRANT_MONTHS)


def is_legacy_account(account: AccountRecord) -> bool:
    """Studio created strictly before the cutoff."""
    if account.studio_created_at is None:
        return False
    return to_naive_utc(account.studio_created_at) < LEGACY_CUTOFF


def is_paid_subscription(subscription: SubscriptionRecord) -> bool:
    return subscription.is_paid


def subscription_duration_days(subscription: SubscriptionRecord) -> float | None:
    """Length of the billing period in days, or None when it has no end."""
    if subscription.current_period_end is None:
        return None
    start = subscription.current_period_start or subscription.created_at
    delta = to_naive_utc(subscription.current_period_end) - to_naive_utc(start)
    return delta.total_seconds() / _SECONDS_PER_DAY


def is_qualifying_subscription(subscription: SubscriptionRecord) -> bool:
    """Paid and at least :data:`MIN_QUALIFYING_DAYS` long."""
    if not is_paid_subscription(subscription):
        return False
    duration = subscription_duration_days(subscription)
    return duration is not None and duration >= MIN_QUALIFYING_DAYS


def has_earned_unlock(account: AccountRecord) -> bool:
    if not account.payments:
        return False
    return any(is_qualifying_subscription(sub) for sub in account.subscriptions)


@dataclass
class _Facts:
    """Lazily derived inputs shared by the decision rules."""

    account: AccountRecord | None
    now: datetime

    @cached_property
    def markers(self) -> LegacyMarkers:
        return parse_legacy_markers(self.account.metadata)


@dataclass(frozen=True)
class DecisionRule:
    name: str
    applies: Callable[[_Facts], bool]
    outcome: Callable[[_Facts], LegacyVoiceoverStatus]


def _is_unrestricted(facts: _Facts) -> bool:
    account = facts.account
    return account is None or account.is_admin or not is_legacy_account(account)


def _unlocked(reason: UnlockReason) -> Callable[[_Facts], LegacyVoiceoverStatus]:
    status = LegacyVoiceoverStatus(is_legacy=True, has_unlock=True, unlock_reason=reason)
    return lambda facts: status


def _restricted(facts: _Facts) -> LegacyVoiceoverStatus:
    grace = facts.markers.grace
    grace_ends_at = grace.ends_at if grace is not None else None
    grace_active = grace_ends_at is not None and grace_ends_at > facts.now
    grace_expired = grace_ends_at is not None and grace_ends_at <= facts.now
    return LegacyVoiceoverStatus(
        is_legacy=True,
        is_restricted=True,
        has_unlock=False,
        grace_active=grace_active,
        grace_ends_at=grace_ends_at,
        should_block_restricted_capability=True,
        should_revoke_existing_grant=grace_expired,
    )


# Evaluated top to bottom; the first matching rule wins. Do not reorder.
DECISION_TABLE: tuple[DecisionRule, ...] = (
    DecisionRule("unrestricted", _is_unrestricted, lambda facts: UNRESTRICTED),
    DecisionRule(
        "unlock_marker",
        lambda facts: facts.markers.unlock is not None,
        _unlocked(UnlockReason.MARKER),
    ),
    DecisionRule(
        "earned_unlock",
        lambda facts: has_earned_unlock(facts.account),
        _unlocked(UnlockReason.QUALIFYING_SUBSCRIPTION),
    ),
    DecisionRule("restricted", lambda facts: True, _restricted),
)


def evaluate_legacy_voiceover(account: AccountRecord | None, now: datetime) -> LegacyVoiceoverStatus:
    """Classify an account's VOICEOVER entitlement at ``now``.

    Raises:
        InvalidInputError: ``now`` or one of the account's timestamps is not
            a datetime, or a metadata marker holds a malformed timestamp.
    """
    facts = _Facts(account=account, now=to_naive_utc(now))
    for rule in DECISION_TABLE:
        if rule.applies(facts):
            return rule.outcome(facts)
    raise AssertionError("decision table has no catch-all rule")
