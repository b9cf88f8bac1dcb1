"""Membership tiers, listing categories, and per-tier listing limits."""

from dataclasses import dataclass
from enum import Enum


class MembershipTier(str, Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


class AccountStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"
    PENDING = "PENDING"


class AccountRole(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    PAST_DUE = "PAST_DUE"
    INACTIVE = "INACTIVE"


class StudioType(str, Enum):
    """Listing categories a studio can appear under."""

    HOME = "HOME"
    RECORDING = "RECORDING"
    PODCAST = "PODCAST"
    VOICEOVER = "VOICEOVER"
    VO_COACH = "VO_COACH"
    AUDIO_PRODUCER = "AUDIO_PRODUCER"


# Premium-only category gated for legacy accounts; also exclusive of all others.
RESTRICTED_STUDIO_TYPE = StudioType.VOICEOVER

# Category a studio falls back to when its only category is revoked.
FALLBACK_STUDIO_TYPE = StudioType.HOME


@dataclass(frozen=True)
class TierLimits:
    """Listing-category limits for a membership tier."""

    tier: MembershipTier
    studio_types_max: int | None  # None = unlimited
    studio_types_excluded: frozenset[StudioType]


TIER_LIMITS: dict[MembershipTier, TierLimits] = {
    MembershipTier.BASIC: TierLimits(
        tier=MembershipTier.BASIC,
        studio_types_max=1,
        studio_types_excluded=frozenset({StudioType.VOICEOVER}),
    ),
    MembershipTier.PREMIUM: TierLimits(
        tier=MembershipTier.PREMIUM,
        studio_types_max=None,
        studio_types_excluded=frozenset(),
    ),
}


def get_tier_limits(tier: MembershipTier | str | None) -> TierLimits:
    """Get limits for a tier. Defaults to BASIC if unknown or missing."""
    try:
        return TIER_LIMITS[MembershipTier(tier)]
    except ValueError:
        return TIER_LIMITS[MembershipTier.BASIC]


def is_premium_tier(tier: MembershipTier | str | None) -> bool:
    return get_tier_limits(tier).tier is MembershipTier.PREMIUM
