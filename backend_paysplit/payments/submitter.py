"""
Client-side payment flow: build, sign, submit, confirm, with rebuild on expiry.

A transaction whose recent blockhash expires before it lands is rebuilt with a
fresh blockhash and signed again, up to max_attempts in total. A signer that
raises UserRejectedError ends the flow immediately.
"""

from __future__ import annotations

import inspect
import json
from typing import Any, Awaitable, Callable, Protocol, Union

import base58
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import Transaction

from backend_paysplit.core.exceptions import BlockhashExpiredError, UserRejectedError
from backend_paysplit.payments.builder import BuiltTransaction, PaymentTransactionBuilder
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3

SignedPayload = Union[Transaction, bytes]
Signer = Callable[[BuiltTransaction], Union[SignedPayload, Awaitable[SignedPayload]]]


class SubmitterLedger(Protocol):
    async def send_raw_transaction(self, raw_tx: bytes, *, preflight_commitment: str = "confirmed") -> str: ...

    async def confirm_transaction(self, signature: str, last_valid_block_height: int, **kwargs: Any) -> bool: ...


def load_keypair(private_key: str) -> Keypair:
    """Load a Keypair from a base58 secret key or a JSON array of 64 bytes."""
    raw = private_key.strip()
    if raw.startswith("["):
        try:
            arr = json.loads(raw)
            if len(arr) >= 64:
                return Keypair.from_bytes(bytes(arr[:64]))
        except (json.JSONDecodeError, TypeError, ValueError):
            pass
    try:
        return Keypair.from_bytes(base58.b58decode(raw))
    except ValueError as e:
        logger.warning("payer_keypair_load_failed", error=str(e))
        raise ValueError("Invalid payer private key") from e


def keypair_signer(keypair: Keypair) -> Signer:
    """Signer that signs the built transaction with a local keypair."""

    def _sign(built: BuiltTransaction) -> Transaction:
        tx = built.transaction
        tx.sign([keypair], Hash.from_string(built.blockhash))
        return tx

    return _sign


class PaymentSubmitter:
    """Drives one payment from unsigned build to confirmed signature."""

    def __init__(
        self,
        builder: PaymentTransactionBuilder,
        ledger: SubmitterLedger,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        confirm_timeout_sec: float = 60.0,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self._builder = builder
        self._ledger = ledger
        self._max_attempts = max_attempts
        self._confirm_timeout_sec = confirm_timeout_sec

    async def _sign(self, sign: Signer, built: BuiltTransaction) -> bytes:
        signed = sign(built)
        if inspect.isawaitable(signed):
            signed = await signed
        return signed if isinstance(signed, bytes) else bytes(signed)

    async def pay(self, payer: str, sign: Signer, referrer: str | None = None) -> str:
        """
        Pay for one analysis. Returns the confirmed transaction signature.

        Raises UserRejectedError if the signer declines, BlockhashExpiredError once
        all attempts expired, and any other build or ledger error unchanged.
        """
        last_error: BlockhashExpiredError | None = None
        for attempt in range(1, self._max_attempts + 1):
            built = await self._builder.build(payer, referrer)
            try:
                raw = await self._sign(sign, built)
            except UserRejectedError:
                logger.info("payment_user_rejected", payer=short(payer), attempt=attempt)
                raise
            try:
                signature = await self._ledger.send_raw_transaction(raw, preflight_commitment="confirmed")
                await self._ledger.confirm_transaction(
                    signature,
                    built.last_valid_block_height,
                    commitment="confirmed",
                    timeout_sec=self._confirm_timeout_sec,
                )
            except BlockhashExpiredError as e:
                last_error = e
                logger.warning(
                    "payment_blockhash_expired",
                    payer=short(payer),
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                )
                continue
            logger.info("payment_confirmed", payer=short(payer), signature=short(signature), attempt=attempt)
            return signature
        logger.error("payment_attempts_exhausted", payer=short(payer), max_attempts=self._max_attempts)
        raise last_error or BlockhashExpiredError("Payment transaction expired")
