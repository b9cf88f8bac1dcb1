"""Account storage: abstract interfaces and the database-backed store."""

from membership_engine.store.base import AccountStore, AccountTransaction, CandidateQuery
from membership_engine.store.database import DatabaseAccountStore

__all__ = [
    "AccountStore",
    "AccountTransaction",
    "CandidateQuery",
    "DatabaseAccountStore",
]
