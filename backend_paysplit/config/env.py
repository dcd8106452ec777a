"""
Environment variable loading for Paysplit.

- SOLANA_NETWORK: devnet | mainnet (default: mainnet)
- SOLANA_RPC_URL: RPC endpoint (read from .env)
- HELIUS_API_KEY: Helius API key (fallback for RPC URL)
- SETTLEMENT_TOKEN_MINT: SPL mint used for payments (default: USDC for the network)
- APP_ENV: production | staging | development | dev | local | test
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_paysplit/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"

# Circle USDC mints
USDC_MAINNET_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
USDC_DEVNET_MINT = "4zMMC9srt5Ri5X14GAgXhaHii3GnPAEERYPJgZJDncDU"

DEVELOPMENT_ENVS = frozenset({"development", "dev", "local", "test"})


def load_paysplit_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    load_dotenv(_ENV_PATH, override=False)


def env_str(name: str, default: str = "") -> str:
    load_paysplit_env()
    return (os.getenv(name) or "").strip() or default


def env_bool(name: str, default: bool = False) -> bool:
    raw = env_str(name).lower()
    if raw in ("1", "true", "yes", "on"):
        return True
    if raw in ("0", "false", "no", "off"):
        return False
    return default


def get_app_env() -> str:
    """Return APP_ENV lowercased. Default: production (fail safe)."""
    return env_str("APP_ENV", "production").lower()


def is_development_env(app_env: str | None = None) -> bool:
    return (app_env or get_app_env()) in DEVELOPMENT_ENVS


def get_solana_network() -> str:
    """Return SOLANA_NETWORK from env: devnet | mainnet. Default: mainnet."""
    raw = (env_str("SOLANA_NETWORK") or env_str("SOLANA_CLUSTER") or "mainnet").lower()
    return "devnet" if raw == "devnet" else "mainnet"


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (network-specific) > devnet/mainnet default.
    """
    url = env_str("SOLANA_RPC_URL")
    if url:
        return url
    key = env_str("HELIUS_API_KEY")
    network = get_solana_network()
    if key:
        if network == "devnet":
            return HELIUS_DEVNET_URL_TEMPLATE.format(key=key)
        return HELIUS_MAINNET_URL_TEMPLATE.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def get_settlement_mint() -> str:
    """Return SETTLEMENT_TOKEN_MINT, or USDC for the current network."""
    mint = env_str("SETTLEMENT_TOKEN_MINT")
    if mint:
        return mint
    return USDC_DEVNET_MINT if get_solana_network() == "devnet" else USDC_MAINNET_MINT


def mask_rpc_url(rpc: str) -> str:
    """Hide API keys embedded in RPC URLs before logging."""
    if "api-key=" in rpc:
        return rpc.split("api-key=")[0] + "api-key=***"
    return rpc
