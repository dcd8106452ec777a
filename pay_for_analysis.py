#!/usr/bin/env python3
"""
Pay for one analysis from a local keypair, then optionally request it from the API.

Builds the split-payment transaction (with referral when --referrer is set), signs
with PAYER_PRIVATE_KEY, submits, and waits for confirmation. An expired blockhash
is rebuilt and re-signed up to 3 times. Intended for devnet testing.

Usage:
  python pay_for_analysis.py [--referrer WALLET] [--dry-run]
  python pay_for_analysis.py --api-url http://localhost:8000 --token-symbol SOL --exchange binance

Env: PAYER_PRIVATE_KEY (base58 or JSON byte array), SOLANA_NETWORK, SOLANA_RPC_URL,
     PAYMENT_WALLET_1, PAYMENT_WALLET_2, ANALYSIS_PRICE_USDC.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

import requests
from dotenv import load_dotenv

load_dotenv()

# Run from project root so backend_paysplit is importable
if __name__ == "__main__" and not __package__:
    _root = os.path.abspath(os.path.dirname(__file__))
    if _root not in sys.path:
        sys.path.insert(0, _root)

from backend_paysplit.config.env import mask_rpc_url
from backend_paysplit.config.settings import get_settings
from backend_paysplit.core.exceptions import PaysplitError
from backend_paysplit.ledger.rpc import SolanaLedgerClient
from backend_paysplit.payments.builder import PaymentTransactionBuilder
from backend_paysplit.payments.submitter import PaymentSubmitter, keypair_signer, load_keypair
from backend_paysplit.paysplit_logging import get_logger

logger = get_logger(__name__)

ANALYSIS_TIMEOUT_SEC = 120


def _explorer_link(signature: str, network: str) -> str:
    suffix = "?cluster=devnet" if network == "devnet" else ""
    return f"https://explorer.solana.com/tx/{signature}{suffix}"


async def _pay(args: argparse.Namespace) -> str | None:
    settings = get_settings()
    keypair = load_keypair(args.private_key)
    payer = str(keypair.pubkey())
    print(f"network={settings.solana_network} rpc={mask_rpc_url(settings.solana_rpc_url)}")
    print(f"payer={payer} price={settings.analysis_price}")

    async with SolanaLedgerClient(settings.solana_rpc_url, timeout_sec=settings.rpc_timeout_sec) as ledger:
        builder = PaymentTransactionBuilder(ledger, settings)
        if args.dry_run:
            built = await builder.build(payer, args.referrer)
            print("split:", built.split.to_dict())
            for t in built.transfers:
                print(f"transfer owner={t.owner} token_account={t.token_account} amount={t.amount}")
            print("created_accounts:", built.created_accounts)
            print("transaction_base64:", built.to_base64())
            return None
        submitter = PaymentSubmitter(builder, ledger, max_attempts=args.max_attempts)
        signature = await submitter.pay(payer, keypair_signer(keypair), args.referrer)
    print(f"signature={signature}")
    print(f"explorer={_explorer_link(signature, settings.solana_network)}")
    return signature


def _request_analysis(args: argparse.Namespace, payer: str, signature: str) -> int:
    body = {
        "tokenSymbol": args.token_symbol,
        "exchange": args.exchange,
        "walletAddress": payer,
        "paymentSignature": signature,
        "referrerWallet": args.referrer,
    }
    resp = requests.post(f"{args.api_url.rstrip('/')}/api/analysis", json=body, timeout=ANALYSIS_TIMEOUT_SEC)
    print(f"analysis_status={resp.status_code}")
    print(resp.text)
    return 0 if resp.ok else 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Pay for one analysis in USDC and optionally request it.")
    parser.add_argument("--private-key", default=os.getenv("PAYER_PRIVATE_KEY", ""), help="Payer secret key (or set PAYER_PRIVATE_KEY)")
    parser.add_argument("--referrer", default=os.getenv("REFERRER_WALLET") or None, help="Referrer wallet (optional)")
    parser.add_argument("--max-attempts", type=int, default=3, help="Rebuild-and-resign attempts on blockhash expiry")
    parser.add_argument("--dry-run", action="store_true", help="Build and print the unsigned transaction only")
    parser.add_argument("--api-url", default="", help="If set, POST /api/analysis with the signature after paying")
    parser.add_argument("--token-symbol", default="SOL")
    parser.add_argument("--exchange", default="binance")
    args = parser.parse_args()

    if not args.private_key.strip():
        print("PAYER_PRIVATE_KEY not set", file=sys.stderr)
        return 1
    try:
        signature = asyncio.run(_pay(args))
    except (PaysplitError, ValueError) as e:
        logger.error("pay_for_analysis_failed", error=str(e))
        print(f"payment failed: {e}", file=sys.stderr)
        return 1
    if signature and args.api_url:
        payer = str(load_keypair(args.private_key).pubkey())
        return _request_analysis(args, payer, signature)
    return 0


if __name__ == "__main__":
    sys.exit(main())
