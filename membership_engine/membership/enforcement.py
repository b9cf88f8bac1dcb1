"""Server-side listing-category enforcement.

Every write that lets an account choose its studio types goes through
:func:`enforce_studio_types`; there is no read-time filter, so whatever a
client submits is reduced to the allowed subset before it is stored.
"""

from collections.abc import Iterable

from membership_engine.errors import InvalidInputError
from membership_engine.membership.legacy import LegacyVoiceoverStatus
from membership_engine.membership.tiers import (
    RESTRICTED_STUDIO_TYPE,
    MembershipTier,
    StudioType,
    get_tier_limits,
)


def coerce_studio_types(requested: Iterable[StudioType | str]) -> list[StudioType]:
    """Convert to :class:`StudioType`, dropping repeats (first one wins)."""
    result: list[StudioType] = []
    for value in requested:
        try:
            studio_type = StudioType(value)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown studio type: {value!r}") from exc
        if studio_type not in result:
            result.append(studio_type)
    return result


def enforce_studio_types(
    requested: Iterable[StudioType | str],
    tier: MembershipTier | str | None,
    status: LegacyVoiceoverStatus,
) -> list[StudioType]:
    """Reduce ``requested`` to the categories this account may list under.

    1. drop categories the tier excludes (BASIC never gets VOICEOVER)
    2. drop VOICEOVER when the legacy status blocks it
    3. VOICEOVER cannot be combined with anything else
    4. truncate to the tier's maximum, keeping submission order
    """
    limits = get_tier_limits(tier)

    allowed = [t for t in coerce_studio_types(requested) if t not in limits.studio_types_excluded]

    if status.should_block_restricted_capability:
        allowed = [t for t in allowed if t is not RESTRICTED_STUDIO_TYPE]

    if RESTRICTED_STUDIO_TYPE in allowed and len(allowed) > 1:
        allowed = [RESTRICTED_STUDIO_TYPE]

    if limits.studio_types_max is not None:
        allowed = allowed[: limits.studio_types_max]

    return allowed
