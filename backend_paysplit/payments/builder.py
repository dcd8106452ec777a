"""
Transaction builder: unsigned multi-recipient SPL token transfer for a payer to sign.

One transfer_checked instruction per nonzero share (referral commission first,
then platform recipients in configured order), preceded by associated token
account creation for any recipient whose account does not exist yet. The payer
is fee payer and pays rent for created accounts. Nothing is submitted here.
"""

from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass, field
from typing import Protocol

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from backend_paysplit.config.settings import PaymentSettings
from backend_paysplit.core.exceptions import BuildError, PayerAccountMissingError
from backend_paysplit.ledger.models import RecencyMarker
from backend_paysplit.payments.splitter import FeeSplit, split_for_settings
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)


class BuilderLedger(Protocol):
    """Ledger reads the builder needs (SolanaLedgerClient satisfies this)."""

    async def account_exists(self, address: str) -> bool: ...

    async def get_latest_blockhash(self, *, commitment: str = "finalized") -> RecencyMarker: ...


@dataclass(frozen=True)
class PlannedTransfer:
    """One token transfer: wallet owner, its associated token account, minor units."""

    owner: str
    token_account: str
    amount: int


@dataclass
class BuiltTransaction:
    """Unsigned payment transaction plus what the wallet and verifier need to know about it."""

    payer: str
    mint: str
    transaction: Transaction
    blockhash: str
    last_valid_block_height: int
    split: FeeSplit
    transfers: list[PlannedTransfer] = field(default_factory=list)
    created_accounts: list[str] = field(default_factory=list)
    referrer: str | None = None

    def serialize(self) -> bytes:
        return bytes(self.transaction)

    def to_base64(self) -> str:
        return base64.b64encode(self.serialize()).decode("ascii")


def parse_pubkey(address: str, label: str) -> Pubkey:
    """Pubkey.from_string with a BuildError naming the field on failure."""
    try:
        return Pubkey.from_string((address or "").strip())
    except ValueError as e:
        raise BuildError(f"Invalid {label} address") from e


def associated_token_address(owner: str, mint: str) -> str:
    """Associated token account of owner for mint, as base58."""
    return str(get_associated_token_address(Pubkey.from_string(owner), Pubkey.from_string(mint)))


class PaymentTransactionBuilder:
    """
    Builds direct-split and split-with-referral payment transactions.

    Both variants share one code path; a referrer only adds a commission
    transfer in front of the platform transfers.
    """

    def __init__(self, ledger: BuilderLedger, settings: PaymentSettings) -> None:
        self._ledger = ledger
        self._settings = settings

    @property
    def settings(self) -> PaymentSettings:
        return self._settings

    def plan_split(self, payer: str, referrer: str | None = None) -> tuple[FeeSplit, str | None]:
        """Split for this payer; a referrer equal to the payer is dropped."""
        if referrer and referrer.strip() == payer.strip():
            logger.info("builder_self_referral_ignored", payer=short(payer))
            referrer = None
        return split_for_settings(self._settings, has_referrer=bool(referrer)), referrer

    async def build(self, payer: str, referrer: str | None = None) -> BuiltTransaction:
        """
        Build the unsigned transaction for one analysis payment.

        Raises ConfigurationError on bad recipient config, BuildError on invalid
        addresses or an empty payment, PayerAccountMissingError if the payer has no
        token account for the settlement mint, LedgerError on RPC failure.
        """
        recipients = self._settings.require_recipients()
        mint_key = parse_pubkey(self._settings.token_mint, "token mint")
        payer_key = parse_pubkey(payer, "payer")
        referrer = (referrer or "").strip() or None
        if referrer is not None:
            parse_pubkey(referrer, "referrer")
        split, referrer = self.plan_split(str(payer_key), referrer)

        owners_amounts: list[tuple[str, int]] = []
        if referrer is not None:
            owners_amounts.append((referrer, split.referral_commission))
        owners_amounts.extend((r.address, amt) for r, amt in zip(recipients, split.platform_amounts))
        transfers = [
            PlannedTransfer(owner=owner, token_account=associated_token_address(owner, str(mint_key)), amount=amount)
            for owner, amount in owners_amounts
            if amount > 0
        ]
        if not transfers:
            raise BuildError("Payment amount is zero; nothing to transfer")

        payer_ata = get_associated_token_address(payer_key, mint_key)
        # Recipient token accounts in first-seen order, each checked and created once.
        unique_accounts: dict[str, str] = {}
        for t in transfers:
            unique_accounts.setdefault(t.token_account, t.owner)
        exists = await asyncio.gather(
            self._ledger.account_exists(str(payer_ata)),
            *(self._ledger.account_exists(ata) for ata in unique_accounts),
        )
        if not exists[0]:
            logger.info("builder_payer_account_missing", payer=short(payer))
            raise PayerAccountMissingError(payer)

        instructions: list[Instruction] = []
        created: list[str] = []
        for (ata, owner), present in zip(unique_accounts.items(), exists[1:]):
            if present:
                continue
            instructions.append(create_associated_token_account(payer=payer_key, owner=Pubkey.from_string(owner), mint=mint_key))
            created.append(ata)

        decimals = self._settings.token_decimals
        for t in transfers:
            instructions.append(
                transfer_checked(
                    TransferCheckedParams(
                        program_id=TOKEN_PROGRAM_ID,
                        source=payer_ata,
                        mint=mint_key,
                        dest=Pubkey.from_string(t.token_account),
                        owner=payer_key,
                        amount=t.amount,
                        decimals=decimals,
                    )
                )
            )

        recency = await self._ledger.get_latest_blockhash(commitment="finalized")
        message = Message.new_with_blockhash(instructions, payer_key, Hash.from_string(recency.blockhash))
        tx = Transaction.new_unsigned(message)
        logger.info(
            "payment_tx_built",
            payer=short(payer),
            referrer=short(referrer) if referrer else None,
            total=split.total,
            transfers=len(transfers),
            created_accounts=len(created),
        )
        return BuiltTransaction(
            payer=str(payer_key),
            mint=str(mint_key),
            transaction=tx,
            blockhash=recency.blockhash,
            last_valid_block_height=recency.last_valid_block_height,
            split=split,
            transfers=transfers,
            created_accounts=created,
            referrer=referrer,
        )
