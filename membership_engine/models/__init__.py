"""SQLAlchemy models for the membership engine.

All models are imported here so that relationship strings resolve and
``Base.metadata`` sees every table. If you add a new model, import it in
this file.
"""

from membership_engine.models.payment import Payment
from membership_engine.models.studio import StudioProfile, StudioStudioType
from membership_engine.models.subscription import Subscription
from membership_engine.models.user import User
from membership_engine.models.user_metadata import UserMetadata

__all__ = [
    "Payment",
    "StudioProfile",
    "StudioStudioType",
    "Subscription",
    "User",
    "UserMetadata",
]
