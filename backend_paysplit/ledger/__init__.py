"""
Ledger package — Solana JSON-RPC reads and submission.

Fetches transactions with pre/post token balances, recent blockhashes, account
existence and token balances; submits and confirms signed transactions.
"""

from backend_paysplit.ledger.models import LedgerTransaction, RecencyMarker, TokenBalance
from backend_paysplit.ledger.rpc import SolanaLedgerClient

__all__ = ["LedgerTransaction", "RecencyMarker", "SolanaLedgerClient", "TokenBalance"]
