"""Legacy membership entitlement engine."""

__version__ = "0.1.0"
