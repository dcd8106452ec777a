"""
Pytest fixtures for Paysplit tests. Temporary SQLite DB, isolated env, and an
in-memory fake of the Solana ledger client.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
from solders.keypair import Keypair

from backend_paysplit.core.exceptions import LedgerError
from backend_paysplit.ledger.models import LedgerTransaction, RecencyMarker, TokenBalance

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
OTHER_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"
NOW = 1_700_000_000

_ENV_KEYS = (
    "APP_ENV",
    "SOLANA_NETWORK",
    "SOLANA_CLUSTER",
    "SOLANA_RPC_URL",
    "HELIUS_API_KEY",
    "SETTLEMENT_TOKEN_MINT",
    "SETTLEMENT_TOKEN_DECIMALS",
    "ANALYSIS_PRICE_USDC",
    "NEXT_PUBLIC_ANALYSIS_PRICE_USDC",
    "PAYMENT_RECIPIENTS",
    "PAYMENT_WALLET_1",
    "PAYMENT_WALLET_2",
    "NEXT_PUBLIC_PAYMENT_WALLET_1",
    "NEXT_PUBLIC_PAYMENT_WALLET_2",
    "PAYMENT_WALLET_1_PERCENTAGE",
    "PAYMENT_WALLET_2_PERCENTAGE",
    "REFERRAL_COMMISSION_PERCENTAGE",
    "PAYMENT_MAX_AGE_SEC",
    "PAYMENT_TOLERANCE_PCT",
    "REPLAY_GUARD_CAPACITY",
    "REPLAY_GUARD_EVICT_BATCH",
    "RPC_TIMEOUT_SEC",
    "PAYMENT_ALLOW_UNVERIFIED",
    "PUBLIC_BASE_URL",
    "DATABASE_URL",
    "PAYSPLIT_DB_URL",
)


def new_wallet() -> str:
    return str(Keypair().pubkey())


def new_signature() -> str:
    return str(Keypair().sign_message(b"paysplit-test"))


# Any 32-byte base58 value is a well-formed blockhash
BLOCKHASH = new_wallet()


@pytest.fixture(autouse=True)
def paysplit_env(monkeypatch):
    """
    Clear payment env vars and configure two 50/50 recipients, USDC, APP_ENV=test.
    Returns the two recipient wallets.
    """
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    wallet_1, wallet_2 = new_wallet(), new_wallet()
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("SOLANA_NETWORK", "mainnet")
    monkeypatch.setenv("SOLANA_RPC_URL", "http://rpc.test")
    monkeypatch.setenv("SETTLEMENT_TOKEN_MINT", USDC_MINT)
    monkeypatch.setenv("PAYMENT_WALLET_1", wallet_1)
    monkeypatch.setenv("PAYMENT_WALLET_2", wallet_2)

    from backend_paysplit.config.settings import reset_settings_for_test

    reset_settings_for_test()
    yield wallet_1, wallet_2
    reset_settings_for_test()


@pytest.fixture
def paysplit_db(tmp_path, monkeypatch):
    """
    Point the database at a temporary SQLite file and create tables.
    Resets engine cache so each test gets a fresh DB.
    """
    monkeypatch.setenv("PAYSPLIT_DB_PATH", str(tmp_path / "paysplit.db"))

    from backend_paysplit.database import session

    session.reset_engine_for_test()
    session.init_db()
    yield session
    session.reset_engine_for_test()


@pytest.fixture
def settings(paysplit_env):
    """PaymentSettings from the test env: price 0.30 USDC, 50/50, 10% referral, 300s, 1%."""
    from backend_paysplit.config.settings import PaymentSettings

    return PaymentSettings(analysis_price=Decimal("0.30"))


class FakeLedger:
    """
    In-memory stand-in for SolanaLedgerClient.

    transactions: signature -> LedgerTransaction; existing: account addresses that exist;
    fail_with: exception raised by get_transaction.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, LedgerTransaction] = {}
        self.existing: set[str] = set()
        self.balances: dict[str, int] = {}
        self.fail_with: Exception | None = None
        self.blockhash = BLOCKHASH
        self.last_valid_block_height = 1_000
        self.get_transaction_calls = 0
        self.sent: list[bytes] = []
        self.send_errors: list[Exception] = []
        self.confirm_errors: list[Exception] = []

    async def get_transaction(self, signature: str, *, commitment: str = "confirmed") -> LedgerTransaction | None:
        self.get_transaction_calls += 1
        # Yield so concurrent verifications interleave like real RPC calls
        await asyncio.sleep(0)
        if self.fail_with is not None:
            raise self.fail_with
        return self.transactions.get(signature)

    async def account_exists(self, address: str, *, commitment: str = "confirmed") -> bool:
        return address in self.existing

    async def get_latest_blockhash(self, *, commitment: str = "finalized") -> RecencyMarker:
        return RecencyMarker(blockhash=self.blockhash, last_valid_block_height=self.last_valid_block_height)

    async def get_token_account_balance(self, token_account: str, *, commitment: str = "confirmed") -> int | None:
        if self.fail_with is not None:
            raise self.fail_with
        return self.balances.get(token_account)

    async def send_raw_transaction(self, raw_tx: bytes, *, preflight_commitment: str = "confirmed") -> str:
        self.sent.append(raw_tx)
        if self.send_errors:
            raise self.send_errors.pop(0)
        return new_signature()

    async def confirm_transaction(self, signature: str, last_valid_block_height: int, **kwargs) -> bool:
        if self.confirm_errors:
            raise self.confirm_errors.pop(0)
        return True

    async def aclose(self) -> None:
        pass


@pytest.fixture
def fake_ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def make_payment_tx():
    """
    Factory for a LedgerTransaction in which payer's token account pays `credits`
    (token account address -> minor units) in `mint`.
    """

    def _make(
        signature: str,
        payer: str,
        credits: dict[str, int],
        *,
        mint: str = USDC_MINT,
        block_time: int | None = NOW,
        err=None,
        payer_balance: int = 5_000_000,
    ) -> LedgerTransaction:
        payer_token_account = new_wallet()
        keys = [payer, payer_token_account] + list(credits)
        pre = [TokenBalance(account_index=1, mint=mint, owner=payer, amount=payer_balance)]
        post = [TokenBalance(account_index=1, mint=mint, owner=payer, amount=payer_balance - sum(credits.values()))]
        for i, amount in enumerate(credits.values(), start=2):
            pre.append(TokenBalance(account_index=i, mint=mint, owner=None, amount=0))
            post.append(TokenBalance(account_index=i, mint=mint, owner=None, amount=amount))
        return LedgerTransaction(
            signature=signature,
            slot=123,
            block_time=block_time,
            err=err,
            account_keys=keys,
            pre_token_balances=pre,
            post_token_balances=post,
        )

    return _make


@pytest.fixture
def ledger_error() -> LedgerError:
    return LedgerError("connection refused")
