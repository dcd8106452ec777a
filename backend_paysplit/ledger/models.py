"""
Data models for Solana ledger reads.

Mirrors getTransaction / getLatestBlockhash JSON-RPC response fields. Token
balance deltas are computed from meta.preTokenBalances / meta.postTokenBalances,
the ledger's own before/after snapshot, never from instruction data.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class RecencyMarker:
    """Recent blockhash and the last block height at which it is still valid."""

    blockhash: str
    last_valid_block_height: int


@dataclass(frozen=True)
class TokenBalance:
    """One entry of meta.preTokenBalances / meta.postTokenBalances."""

    account_index: int
    mint: str
    owner: str | None
    amount: int
    """Raw amount in minor units (uiTokenAmount.amount)."""

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "TokenBalance":
        ui = item.get("uiTokenAmount") or {}
        raw = ui.get("amount")
        return cls(
            account_index=int(item["accountIndex"]),
            mint=str(item.get("mint") or ""),
            owner=item.get("owner"),
            amount=int(raw) if raw not in (None, "") else 0,
        )


def _get_account_keys(message: dict[str, Any], meta: dict[str, Any]) -> list[str]:
    """
    Resolve accountKeys to base58 strings (json and jsonParsed encodings).
    For versioned transactions, appends meta.loadedAddresses (writable, then readonly).
    """
    keys = message.get("accountKeys") or []
    out = [k if isinstance(k, str) else k.get("pubkey", "") for k in keys]
    loaded = meta.get("loadedAddresses") or {}
    for role in ("writable", "readonly"):
        out.extend(loaded.get(role) or [])
    return out


@dataclass
class LedgerTransaction:
    """A confirmed transaction as recorded by the ledger."""

    signature: str
    slot: int | None
    block_time: int | None
    err: Any
    """None if the transaction succeeded; RPC error object if it failed."""
    account_keys: list[str] = field(default_factory=list)
    pre_token_balances: list[TokenBalance] = field(default_factory=list)
    post_token_balances: list[TokenBalance] = field(default_factory=list)

    @classmethod
    def from_rpc_result(cls, signature: str, result: dict[str, Any]) -> "LedgerTransaction":
        """Build from a getTransaction result (json encoding)."""
        meta = result.get("meta") or {}
        message = (result.get("transaction") or {}).get("message") or {}
        return cls(
            signature=signature,
            slot=result.get("slot"),
            block_time=result.get("blockTime"),
            err=meta.get("err"),
            account_keys=_get_account_keys(message, meta),
            pre_token_balances=[TokenBalance.from_rpc_item(b) for b in meta.get("preTokenBalances") or []],
            post_token_balances=[TokenBalance.from_rpc_item(b) for b in meta.get("postTokenBalances") or []],
        )

    @property
    def succeeded(self) -> bool:
        return self.err is None

    @property
    def fee_payer(self) -> str | None:
        return self.account_keys[0] if self.account_keys else None

    def token_deltas(self, mint: str) -> dict[str, int]:
        """
        Net balance change per token account address for one mint (post - pre).

        Accounts that appear only in pre or only in post count the missing side as 0.
        Balances for other mints are ignored.
        """
        deltas: dict[int, int] = defaultdict(int)
        for b in self.post_token_balances:
            if b.mint == mint:
                deltas[b.account_index] += b.amount
        for b in self.pre_token_balances:
            if b.mint == mint:
                deltas[b.account_index] -= b.amount
        out: dict[str, int] = {}
        for idx, delta in deltas.items():
            if 0 <= idx < len(self.account_keys):
                address = self.account_keys[idx]
                out[address] = out.get(address, 0) + delta
        return out
