"""
Application-level exceptions and verification error kinds.

ErrorKind values are what the API surfaces to clients; exceptions carry the
failure between builder, ledger client, verifier, and orchestrator.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Why a settlement attempt was rejected. Terminal for the current attempt."""

    ALREADY_USED = "already_used"
    NOT_FOUND = "not_found"
    TRANSACTION_FAILED = "transaction_failed"
    TOO_OLD = "too_old"
    PAYER_MISMATCH = "payer_mismatch"
    NO_AUTHORIZED_PAYMENT = "no_authorized_payment"
    INSUFFICIENT_AMOUNT = "insufficient_amount"
    NETWORK_OR_TIMEOUT = "network_or_timeout"
    CONFIGURATION_INVALID = "configuration_invalid"
    SIGNATURE_REQUIRED = "signature_required"

    @property
    def message(self) -> str:
        return _MESSAGES[self]

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS.get(self, 402)


_MESSAGES = {
    ErrorKind.ALREADY_USED: "Transaction signature already used",
    ErrorKind.NOT_FOUND: "Transaction not found",
    ErrorKind.TRANSACTION_FAILED: "Transaction failed",
    ErrorKind.TOO_OLD: "Transaction too old (must be within 5 minutes)",
    ErrorKind.PAYER_MISMATCH: "Transaction was not paid by this wallet",
    ErrorKind.NO_AUTHORIZED_PAYMENT: "No payment to authorized wallets found",
    ErrorKind.INSUFFICIENT_AMOUNT: "Insufficient payment amount",
    ErrorKind.NETWORK_OR_TIMEOUT: "Could not reach the Solana network, try again",
    ErrorKind.CONFIGURATION_INVALID: "Payment system is not configured",
    ErrorKind.SIGNATURE_REQUIRED: "Payment signature required",
}

_HTTP_STATUS = {
    ErrorKind.ALREADY_USED: 409,
    ErrorKind.NETWORK_OR_TIMEOUT: 503,
    ErrorKind.CONFIGURATION_INVALID: 500,
}


class PaysplitError(Exception):
    """Base class for all backend_paysplit errors."""


class ConfigurationError(PaysplitError):
    """Payment configuration is invalid (recipients, percentages, environment gating)."""

    kind = ErrorKind.CONFIGURATION_INVALID


class BuildError(PaysplitError):
    """Payment transaction could not be built."""


class PayerAccountMissingError(BuildError):
    """Payer holds no token account for the settlement mint."""

    def __init__(self, payer: str) -> None:
        super().__init__("You need USDC in your wallet to pay for analysis")
        self.payer = payer


class LedgerError(PaysplitError):
    """Solana RPC returned an error or could not be reached."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class LedgerTimeoutError(LedgerError):
    """Solana RPC call exceeded its timeout."""


class BlockhashExpiredError(LedgerError):
    """Transaction's recent blockhash expired before it landed; rebuild and re-sign."""


class UserRejectedError(PaysplitError):
    """Wallet owner declined to sign. Terminal, never retried."""


class PaidActionError(PaysplitError):
    """The paid action failed after the payment was verified. No refund path."""
