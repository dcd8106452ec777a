"""
Solana JSON-RPC client for payment building and verification.

Async (httpx) so every ledger call is a suspension point that does not block the
API event loop. Each call has a bounded timeout; transport failures and timeouts
raise LedgerError / LedgerTimeoutError so callers can fail closed.
"""

from __future__ import annotations

import asyncio
import base64
import itertools
import time
from typing import Any

import httpx

from backend_paysplit.core.exceptions import (
    BlockhashExpiredError,
    LedgerError,
    LedgerTimeoutError,
)
from backend_paysplit.ledger.models import LedgerTransaction, RecencyMarker
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SEC = 15.0
DEFAULT_CONFIRM_TIMEOUT_SEC = 60.0
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
# RPC error code for an unknown/uninitialised account in getTokenAccountBalance
INVALID_PARAMS_CODE = -32602
_BLOCKHASH_ERROR_MARKERS = ("blockhash not found", "block height exceeded", "blockhashnotfound")

_request_ids = itertools.count(1)


def _build_rpc_body(method: str, params: list[Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": next(_request_ids), "method": method, "params": params}


def _is_blockhash_error(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _BLOCKHASH_ERROR_MARKERS)


class SolanaLedgerClient:
    """
    Minimal async Solana RPC client for the payment flow.

    getTransaction, getLatestBlockhash, getAccountInfo, getTokenAccountBalance,
    sendTransaction, getSignatureStatuses, getBlockHeight.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._timeout_sec = timeout_sec
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def rpc_url(self) -> str:
        return self._rpc_url

    def _client_ensure(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout_sec),
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SolanaLedgerClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def _call(self, method: str, params: list[Any]) -> Any:
        """Perform one JSON-RPC call; raise LedgerError on transport or RPC error."""
        body = _build_rpc_body(method, params)
        try:
            resp = await self._client_ensure().post(self._rpc_url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            logger.warning("ledger_rpc_timeout", method=method, timeout_sec=self._timeout_sec)
            raise LedgerTimeoutError(f"Solana RPC {method} timed out after {self._timeout_sec}s") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("ledger_rpc_transport_error", method=method, error=str(e))
            raise LedgerError(f"Solana RPC {method} failed: {e}") from e
        if "error" in data:
            err = data["error"] or {}
            message = str(err.get("message", err))
            raise LedgerError(f"Solana RPC error: {message}", code=err.get("code"))
        return data.get("result")

    async def get_transaction(self, signature: str, *, commitment: str = "confirmed") -> LedgerTransaction | None:
        """Fetch a transaction with pre/post token balances. None if the ledger has no record."""
        result = await self._call(
            "getTransaction",
            [signature, {"encoding": "json", "commitment": commitment, "maxSupportedTransactionVersion": 0}],
        )
        if not result:
            return None
        return LedgerTransaction.from_rpc_result(signature, result)

    async def get_latest_blockhash(self, *, commitment: str = "finalized") -> RecencyMarker:
        result = await self._call("getLatestBlockhash", [{"commitment": commitment}])
        value = (result or {}).get("value") or {}
        if not value.get("blockhash"):
            raise LedgerError("No blockhash in getLatestBlockhash response")
        return RecencyMarker(
            blockhash=value["blockhash"],
            last_valid_block_height=int(value.get("lastValidBlockHeight") or 0),
        )

    async def account_exists(self, address: str, *, commitment: str = "confirmed") -> bool:
        result = await self._call(
            "getAccountInfo",
            [address, {"encoding": "base64", "commitment": commitment}],
        )
        return bool(result) and (result.get("value") is not None)

    async def get_token_account_balance(self, token_account: str, *, commitment: str = "confirmed") -> int | None:
        """Raw balance in minor units, or None when the token account does not exist."""
        try:
            result = await self._call("getTokenAccountBalance", [token_account, {"commitment": commitment}])
        except LedgerError as e:
            if e.code == INVALID_PARAMS_CODE:
                return None
            raise
        value = (result or {}).get("value") or {}
        raw = value.get("amount")
        return int(raw) if raw not in (None, "") else None

    async def get_block_height(self, *, commitment: str = "confirmed") -> int:
        result = await self._call("getBlockHeight", [{"commitment": commitment}])
        return int(result or 0)

    async def send_raw_transaction(self, raw_tx: bytes, *, preflight_commitment: str = "confirmed") -> str:
        """Submit a signed, serialized transaction. Raises BlockhashExpiredError on stale blockhash."""
        encoded = base64.b64encode(raw_tx).decode("ascii")
        try:
            result = await self._call(
                "sendTransaction",
                [
                    encoded,
                    {
                        "encoding": "base64",
                        "skipPreflight": False,
                        "preflightCommitment": preflight_commitment,
                        "maxRetries": 3,
                    },
                ],
            )
        except LedgerTimeoutError:
            raise
        except LedgerError as e:
            if _is_blockhash_error(str(e)):
                raise BlockhashExpiredError(str(e), code=e.code) from e
            raise
        if not result:
            raise LedgerError("sendTransaction returned no signature")
        logger.info("ledger_tx_sent", signature=short(str(result)))
        return str(result)

    async def get_signature_status(self, signature: str) -> dict[str, Any] | None:
        result = await self._call("getSignatureStatuses", [[signature], {"searchTransactionHistory": False}])
        statuses = (result or {}).get("value") or []
        return statuses[0] if statuses else None

    async def confirm_transaction(
        self,
        signature: str,
        last_valid_block_height: int,
        *,
        commitment: str = "confirmed",
        timeout_sec: float = DEFAULT_CONFIRM_TIMEOUT_SEC,
        poll_interval_sec: float = DEFAULT_CONFIRM_POLL_INTERVAL_SEC,
    ) -> bool:
        """
        Poll until the signature reaches commitment. Raises BlockhashExpiredError once the
        block height passes last_valid_block_height, LedgerError if the tx failed on-chain,
        LedgerTimeoutError on timeout.
        """
        accepted = ("confirmed", "finalized") if commitment == "confirmed" else ("finalized",)
        deadline = time.monotonic() + timeout_sec
        while time.monotonic() < deadline:
            status = await self.get_signature_status(signature)
            if status is not None:
                if status.get("err") is not None:
                    logger.warning("ledger_tx_confirm_failed", signature=short(signature), err=str(status["err"]))
                    raise LedgerError(f"Transaction failed: {status['err']}")
                if status.get("confirmationStatus") in accepted:
                    logger.info(
                        "ledger_tx_confirmed",
                        signature=short(signature),
                        confirmation_status=status.get("confirmationStatus"),
                    )
                    return True
            elif await self.get_block_height(commitment=commitment) > last_valid_block_height:
                raise BlockhashExpiredError(
                    f"Block height exceeded {last_valid_block_height}; transaction {short(signature)} expired"
                )
            await asyncio.sleep(poll_interval_sec)
        raise LedgerTimeoutError(f"Transaction {short(signature)} not confirmed within {timeout_sec}s")
