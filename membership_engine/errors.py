"""Exception types raised by the membership engine."""


class MembershipEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(MembershipEngineError):
    """Missing or inconsistent environment configuration. Always fatal."""


class InvalidInputError(MembershipEngineError, ValueError):
    """Malformed account data handed to the evaluator or enforcer."""


class AccountNotFoundError(MembershipEngineError):
    """No account exists for the given id."""

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class StudioProfileMissingError(MembershipEngineError):
    """A listing-category write was attempted on an account without a studio."""

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} has no studio profile")
        self.account_id = account_id
