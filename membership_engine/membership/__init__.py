"""Membership domain: tiers, account snapshots, legacy VOICEOVER rules."""

from membership_engine.membership.enforcement import enforce_studio_types
from membership_engine.membership.legacy import (
    UNRESTRICTED,
    LegacyVoiceoverStatus,
    evaluate_legacy_voiceover,
)
from membership_engine.membership.records import AccountRecord, PaymentRecord, SubscriptionRecord
from membership_engine.membership.tiers import MembershipTier, StudioType

__all__ = [
    "UNRESTRICTED",
    "AccountRecord",
    "LegacyVoiceoverStatus",
    "MembershipTier",
    "PaymentRecord",
    "StudioType",
    "SubscriptionRecord",
    "enforce_studio_types",
    "evaluate_legacy_voiceover",
]
