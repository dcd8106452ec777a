"""
Backend Paysplit — on-chain payment verification and split settlement.

Builds multi-recipient USDC transfer transactions for a wallet to sign,
re-derives from raw Solana ledger data that a claimed payment really paid the
platform, and only then unlocks paid analyses and records referral commissions.
Modular layout: ledger client, payments (split / build / verify / replay guard),
settlement orchestrator, database, and API server.
"""

__version__ = "0.1.0"
