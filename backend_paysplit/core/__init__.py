"""
Core utilities — error kinds and exception hierarchy shared by the ledger
client, payments, settlement, and API server.
"""

from backend_paysplit.core.exceptions import (
    BlockhashExpiredError,
    BuildError,
    ConfigurationError,
    ErrorKind,
    LedgerError,
    LedgerTimeoutError,
    PaidActionError,
    PayerAccountMissingError,
    PaysplitError,
    UserRejectedError,
)

__all__ = [
    "BlockhashExpiredError",
    "BuildError",
    "ConfigurationError",
    "ErrorKind",
    "LedgerError",
    "LedgerTimeoutError",
    "PaidActionError",
    "PayerAccountMissingError",
    "PaysplitError",
    "UserRejectedError",
]
