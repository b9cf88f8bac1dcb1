"""Legacy VOICEOVER audit markers and their key-value serialization.

Accounts carry durable markers in the generic ``user_metadata`` store. The
evaluator never reads those keys directly: :func:`parse_legacy_markers` turns
the bag into a small closed set of marker types, and
:func:`serialize_marker` is the only place that knows the key names on the
way back. A misspelled key therefore fails loudly in one place instead of
silently reading as "no marker".

Timestamps are naive UTC internally and ISO-8601 with millisecond precision
and a ``Z`` suffix in storage, e.g. ``2026-03-20T00:00:00.000Z``.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone

from membership_engine.errors import InvalidInputError

UNLOCKED_AT_KEY = "legacy_voiceover_unlocked_at"
GRACE_ENDS_AT_KEY = "legacy_voiceover_grace_ends_at"
GRACE_STARTED_AT_KEY = "legacy_voiceover_grace_started_at"


@dataclass(frozen=True)
class UnlockMarker:
    """The account permanently unlocked VOICEOVER at ``unlocked_at``."""

    unlocked_at: datetime


@dataclass(frozen=True)
class GraceMarker:
    """The account keeps an existing VOICEOVER listing until ``ends_at``."""

    ends_at: datetime
    started_at: datetime | None = None


LegacyMarker = UnlockMarker | GraceMarker


@dataclass(frozen=True)
class LegacyMarkers:
    """Markers found on one account; each is None when absent."""

    unlock: UnlockMarker | None = None
    grace: GraceMarker | None = None


NO_MARKERS = LegacyMarkers()


def utcnow() -> datetime:
    """Current time as naive UTC, matching how timestamps are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Normalize a datetime to naive UTC. Naive inputs are assumed UTC."""
    if not isinstance(value, datetime):
        raise InvalidInputError(f"Expected a datetime, got {type(value).__name__}: {value!r}")
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(raw: str, *, key: str = "timestamp") -> datetime:
    """Parse an ISO-8601 string into a naive UTC datetime."""
    if not isinstance(raw, str):
        raise InvalidInputError(f"{key} must be an ISO-8601 string, got {raw!r}")
    try:
        parsed = datetime.fromisoformat(raw.strip())
    except ValueError as exc:
        raise InvalidInputError(f"{key} is not a valid ISO-8601 timestamp: {raw!r}") from exc
    return to_naive_utc(parsed)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the rest of the platform writes metadata."""
    return to_naive_utc(value).isoformat(timespec="milliseconds") + "Z"


def _optional_timestamp(metadata: Mapping[str, str], key: str) -> datetime | None:
    raw = metadata.get(key)
    if raw is None or raw == "":
        return None
    return parse_timestamp(raw, key=key)


def parse_legacy_markers(metadata: Mapping[str, str] | None) -> LegacyMarkers:
    """Read the legacy VOICEOVER markers out of an account's metadata bag."""
    if not metadata:
        return NO_MARKERS

    unlocked_at = _optional_timestamp(metadata, UNLOCKED_AT_KEY)
    grace_ends_at = _optional_timestamp(metadata, GRACE_ENDS_AT_KEY)

    grace = None
    if grace_ends_at is not None:
        grace = GraceMarker(
            ends_at=grace_ends_at,
            started_at=_optional_timestamp(metadata, GRACE_STARTED_AT_KEY),
        )

    return LegacyMarkers(
        unlock=UnlockMarker(unlocked_at) if unlocked_at is not None else None,
        grace=grace,
    )


def serialize_marker(marker: LegacyMarker) -> dict[str, str]:
    """Return the metadata entries that persist ``marker``."""
    if isinstance(marker, UnlockMarker):
        return {UNLOCKED_AT_KEY: format_timestamp(marker.unlocked_at)}
    if isinstance(marker, GraceMarker):
        entries = {}
        if marker.started_at is not None:
            entries[GRACE_STARTED_AT_KEY] = format_timestamp(marker.started_at)
        entries[GRACE_ENDS_AT_KEY] = format_timestamp(marker.ends_at)
        return entries
    raise InvalidInputError(f"Unknown marker type: {type(marker).__name__}")
