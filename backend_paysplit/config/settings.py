"""
Payment settings: fee, recipients, settlement token, verification limits.

Loaded from environment variables (and .env) into a single dataclass; get_settings()
caches it for the process. Values are read-only shared configuration.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from backend_paysplit.config.env import (
    env_bool,
    env_str,
    get_app_env,
    get_settlement_mint,
    get_solana_network,
    get_solana_rpc_url,
    is_development_env,
)
from backend_paysplit.core.exceptions import ConfigurationError

DEFAULT_ANALYSIS_PRICE = "0.30"
DEFAULT_TOKEN_DECIMALS = 6
DEFAULT_REFERRAL_COMMISSION_PCT = 10
DEFAULT_MAX_TX_AGE_SEC = 300
DEFAULT_TOLERANCE_PCT = 1
DEFAULT_REPLAY_GUARD_CAPACITY = 10_000
DEFAULT_REPLAY_GUARD_EVICT_BATCH = 1_000
DEFAULT_RPC_TIMEOUT_SEC = 15.0


@dataclass(frozen=True)
class RecipientShare:
    """One platform recipient: wallet owner address and its percentage of the platform share."""

    address: str
    percentage: int


def _env_int(name: str, default: int) -> int:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def _parse_price() -> Decimal:
    raw = env_str("ANALYSIS_PRICE_USDC") or env_str("NEXT_PUBLIC_ANALYSIS_PRICE_USDC") or DEFAULT_ANALYSIS_PRICE
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ConfigurationError(f"ANALYSIS_PRICE_USDC must be a decimal, got {raw!r}") from e


def parse_recipients(raw: str) -> tuple[RecipientShare, ...]:
    """Parse "addr:pct,addr:pct" into an ordered tuple of RecipientShare."""
    out: list[RecipientShare] = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        address, sep, pct = part.rpartition(":")
        if not sep or not address.strip():
            raise ConfigurationError(f"PAYMENT_RECIPIENTS entry must be address:percentage, got {part!r}")
        try:
            out.append(RecipientShare(address=address.strip(), percentage=int(pct)))
        except ValueError as e:
            raise ConfigurationError(f"Invalid percentage in PAYMENT_RECIPIENTS entry {part!r}") from e
    return tuple(out)


def _load_recipients() -> tuple[RecipientShare, ...]:
    """PAYMENT_RECIPIENTS wins; otherwise the two-wallet PAYMENT_WALLET_1/2 policy."""
    raw = env_str("PAYMENT_RECIPIENTS")
    if raw:
        return parse_recipients(raw)
    return (
        RecipientShare(
            address=env_str("PAYMENT_WALLET_1") or env_str("NEXT_PUBLIC_PAYMENT_WALLET_1"),
            percentage=_env_int("PAYMENT_WALLET_1_PERCENTAGE", 50),
        ),
        RecipientShare(
            address=env_str("PAYMENT_WALLET_2") or env_str("NEXT_PUBLIC_PAYMENT_WALLET_2"),
            percentage=_env_int("PAYMENT_WALLET_2_PERCENTAGE", 50),
        ),
    )


@dataclass
class PaymentSettings:
    """Settings for building and verifying split payments (env or explicit)."""

    app_env: str = field(default_factory=get_app_env)
    solana_network: str = field(default_factory=get_solana_network)
    solana_rpc_url: str = field(default_factory=get_solana_rpc_url)
    token_mint: str = field(default_factory=get_settlement_mint)
    token_decimals: int = field(default_factory=lambda: _env_int("SETTLEMENT_TOKEN_DECIMALS", DEFAULT_TOKEN_DECIMALS))
    analysis_price: Decimal = field(default_factory=_parse_price)
    recipients: tuple[RecipientShare, ...] = field(default_factory=_load_recipients)
    referral_commission_pct: int = field(default_factory=lambda: _env_int("REFERRAL_COMMISSION_PERCENTAGE", DEFAULT_REFERRAL_COMMISSION_PCT))
    max_tx_age_sec: int = field(default_factory=lambda: _env_int("PAYMENT_MAX_AGE_SEC", DEFAULT_MAX_TX_AGE_SEC))
    tolerance_pct: int = field(default_factory=lambda: _env_int("PAYMENT_TOLERANCE_PCT", DEFAULT_TOLERANCE_PCT))
    replay_guard_capacity: int = field(default_factory=lambda: _env_int("REPLAY_GUARD_CAPACITY", DEFAULT_REPLAY_GUARD_CAPACITY))
    replay_guard_evict_batch: int = field(default_factory=lambda: _env_int("REPLAY_GUARD_EVICT_BATCH", DEFAULT_REPLAY_GUARD_EVICT_BATCH))
    rpc_timeout_sec: float = field(default_factory=lambda: _env_float("RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC))
    allow_unverified: bool = field(default_factory=lambda: env_bool("PAYMENT_ALLOW_UNVERIFIED", False))
    public_base_url: str = field(default_factory=lambda: env_str("PUBLIC_BASE_URL"))

    def __post_init__(self) -> None:
        self.app_env = (self.app_env or "production").strip().lower()
        if self.allow_unverified and not is_development_env(self.app_env):
            raise ConfigurationError(
                f"PAYMENT_ALLOW_UNVERIFIED is only permitted in development, not APP_ENV={self.app_env}"
            )
        if not 0 <= self.tolerance_pct < 100:
            raise ConfigurationError("PAYMENT_TOLERANCE_PCT must be between 0 and 99")
        if self.max_tx_age_sec <= 0:
            raise ConfigurationError("PAYMENT_MAX_AGE_SEC must be positive")
        if self.replay_guard_capacity < 1 or self.replay_guard_evict_batch < 1:
            raise ConfigurationError("Replay guard capacity and eviction batch must be positive")
        if self.rpc_timeout_sec <= 0:
            self.rpc_timeout_sec = DEFAULT_RPC_TIMEOUT_SEC

    @property
    def is_development(self) -> bool:
        return is_development_env(self.app_env)

    def require_recipients(self) -> tuple[RecipientShare, ...]:
        """Return configured recipients or raise ConfigurationError if any address is missing or invalid."""
        from solders.pubkey import Pubkey

        if not self.recipients or any(not r.address for r in self.recipients):
            raise ConfigurationError("Payment wallet addresses not configured")
        for r in self.recipients:
            try:
                Pubkey.from_string(r.address)
            except ValueError as e:
                raise ConfigurationError(f"Invalid payment wallet address {r.address[:16]}") from e
        return self.recipients


_settings: PaymentSettings | None = None


def get_settings() -> PaymentSettings:
    """Return the process-wide PaymentSettings (loaded from env on first call)."""
    global _settings
    if _settings is None:
        _settings = PaymentSettings()
    return _settings


def reset_settings_for_test() -> None:
    """Drop cached settings so the next get_settings() re-reads env. For tests only."""
    global _settings
    _settings = None
