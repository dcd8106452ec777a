"""
Payment verifier: decide from raw ledger data whether a signature paid the platform.

Nothing the client claims about the payment is trusted beyond the signature
itself (and, optionally, who should have paid). Amounts come from the ledger's
pre/post token balances for the settlement mint only. The platform share must
land on platform accounts; the referrer account only ever adds its commission.
Checks run in a fixed order and the first failing one decides the error kind.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from solders.signature import Signature

from backend_paysplit.config.settings import PaymentSettings
from backend_paysplit.core.exceptions import ConfigurationError, ErrorKind, LedgerError
from backend_paysplit.ledger.models import LedgerTransaction
from backend_paysplit.payments.builder import associated_token_address
from backend_paysplit.payments.replay_guard import ReplayGuard
from backend_paysplit.payments.splitter import split_for_settings
from backend_paysplit.paysplit_logging import bind_payment


class VerifierLedger(Protocol):
    async def get_transaction(self, signature: str, *, commitment: str = "confirmed") -> LedgerTransaction | None: ...


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one verification. Never cached."""

    verified: bool
    error: ErrorKind | None = None
    amount_received: int = 0
    expected_total: int = 0
    referral_received: int = 0

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "verified": self.verified,
            "error": self.error.value if self.error else None,
            "errorMessage": self.error_message,
            "amountReceived": self.amount_received,
            "expectedTotal": self.expected_total,
            "referralReceived": self.referral_received,
        }


def is_valid_signature(signature: str) -> bool:
    """True if signature parses as a base58 ed25519 transaction signature."""
    try:
        Signature.from_string(signature)
    except ValueError:
        return False
    return True


def minimum_accepted(total: int, tolerance_pct: int) -> int:
    """Smallest amount accepted for an expected total: floor(total * (100 - tolerance) / 100)."""
    return total * (100 - tolerance_pct) // 100


class PaymentVerifier:
    """
    Verify a claimed payment signature and mark it used.

    clock returns Unix seconds; injectable for tests.
    """

    def __init__(
        self,
        ledger: VerifierLedger,
        guard: ReplayGuard,
        settings: PaymentSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._guard = guard
        self._settings = settings
        self._clock = clock

    @property
    def guard(self) -> ReplayGuard:
        return self._guard

    def _platform_accounts(self) -> list[str]:
        mint = self._settings.token_mint
        return [associated_token_address(r.address, mint) for r in self._settings.require_recipients()]

    async def _guard_call(self, fn: Callable[[str], bool], signature: str) -> bool:
        """Run a replay guard call off the event loop; SQLReplayGuard does blocking DB I/O."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, signature)

    async def verify(
        self,
        signature: str,
        expected_payer: str | None = None,
        referrer: str | None = None,
    ) -> VerificationResult:
        log = bind_payment(signature, expected_payer)
        referrer = (referrer or "").strip() or None
        if referrer and expected_payer and referrer == expected_payer:
            referrer = None
        referrer_account = None
        if referrer:
            try:
                referrer_account = associated_token_address(referrer, self._settings.token_mint)
            except ValueError:
                log.info("payment_verify_referrer_invalid")
                referrer = None

        try:
            platform_accounts = self._platform_accounts()
            split = split_for_settings(self._settings, has_referrer=referrer is not None)
        except (ConfigurationError, ValueError) as e:
            log.error("payment_verify_config_invalid", error=str(e))
            return VerificationResult(verified=False, error=ErrorKind.CONFIGURATION_INVALID)
        expected_total = split.total
        platform_expected = split.total - split.referral_commission
        if referrer_account in platform_accounts:
            referrer_account = None

        def fail(kind: ErrorKind, amount: int = 0, **extra: Any) -> VerificationResult:
            log.info(
                "payment_verify_rejected",
                error_kind=kind.value,
                amount_received=amount,
                expected_total=expected_total,
                **extra,
            )
            return VerificationResult(
                verified=False, error=kind, amount_received=amount, expected_total=expected_total
            )

        signature = (signature or "").strip()
        if not is_valid_signature(signature):
            return fail(ErrorKind.NOT_FOUND, reason="malformed_signature")

        if await self._guard_call(self._guard.contains, signature):
            return fail(ErrorKind.ALREADY_USED)

        try:
            tx = await self._ledger.get_transaction(signature, commitment="confirmed")
        except LedgerError as e:
            log.warning("payment_verify_ledger_error", error=str(e))
            return fail(ErrorKind.NETWORK_OR_TIMEOUT)
        if tx is None:
            return fail(ErrorKind.NOT_FOUND)

        if not tx.succeeded:
            return fail(ErrorKind.TRANSACTION_FAILED, tx_err=str(tx.err))

        if tx.block_time is None:
            return fail(ErrorKind.TOO_OLD, reason="missing_block_time")
        age = int(self._clock()) - int(tx.block_time)
        if age > self._settings.max_tx_age_sec:
            return fail(ErrorKind.TOO_OLD, age_sec=age)

        if expected_payer and tx.fee_payer != expected_payer.strip():
            return fail(ErrorKind.PAYER_MISMATCH)

        deltas = tx.token_deltas(self._settings.token_mint)
        platform_received = sum(max(deltas.get(acct, 0), 0) for acct in platform_accounts)
        referral_received = max(deltas.get(referrer_account, 0), 0) if referrer_account else 0
        # Referrer share counts toward the total only up to the configured commission
        received = platform_received + min(referral_received, split.referral_commission)
        if platform_received <= 0:
            return fail(ErrorKind.NO_AUTHORIZED_PAYMENT, received)
        if platform_received < minimum_accepted(platform_expected, self._settings.tolerance_pct):
            return fail(ErrorKind.INSUFFICIENT_AMOUNT, received, platform_received=platform_received)

        if not await self._guard_call(self._guard.mark_used, signature):
            return fail(ErrorKind.ALREADY_USED, received, reason="lost_race")

        log.info(
            "payment_verified",
            amount_received=received,
            referral_received=referral_received,
            expected_total=expected_total,
            age_sec=age,
        )
        return VerificationResult(
            verified=True,
            amount_received=received,
            expected_total=expected_total,
            referral_received=referral_received,
        )
