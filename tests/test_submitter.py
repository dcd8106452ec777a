"""
Tests for PaymentSubmitter retry policy and keypair loading.
"""

from __future__ import annotations

import asyncio
import json

import base58
import pytest
from solders.keypair import Keypair
from solders.signature import Signature

from backend_paysplit.core.exceptions import BlockhashExpiredError, LedgerError, UserRejectedError
from backend_paysplit.payments.builder import PaymentTransactionBuilder, associated_token_address
from backend_paysplit.payments.submitter import PaymentSubmitter, keypair_signer, load_keypair

from conftest import USDC_MINT


@pytest.fixture
def payer_keypair(fake_ledger, settings):
    kp = Keypair()
    fake_ledger.existing.add(associated_token_address(str(kp.pubkey()), USDC_MINT))
    for r in settings.recipients:
        fake_ledger.existing.add(associated_token_address(r.address, USDC_MINT))
    return kp


@pytest.fixture
def submitter(fake_ledger, settings):
    return PaymentSubmitter(PaymentTransactionBuilder(fake_ledger, settings), fake_ledger)


class CountingSigner:
    def __init__(self, keypair: Keypair, reject: bool = False) -> None:
        self._sign = keypair_signer(keypair)
        self.reject = reject
        self.calls = 0

    def __call__(self, built):
        self.calls += 1
        if self.reject:
            raise UserRejectedError("User rejected the request")
        return self._sign(built)


def test_pay_first_attempt(submitter, fake_ledger, payer_keypair):
    signer = CountingSigner(payer_keypair)
    signature = asyncio.run(submitter.pay(str(payer_keypair.pubkey()), signer))
    assert signature
    assert signer.calls == 1
    assert len(fake_ledger.sent) == 1


def test_blockhash_expiry_rebuilds_and_resigns(submitter, fake_ledger, payer_keypair):
    fake_ledger.send_errors = [BlockhashExpiredError("Blockhash not found")]
    fake_ledger.confirm_errors = [BlockhashExpiredError("block height exceeded")]
    signer = CountingSigner(payer_keypair)
    assert asyncio.run(submitter.pay(str(payer_keypair.pubkey()), signer))
    assert signer.calls == 3
    assert len(fake_ledger.sent) == 3


def test_gives_up_after_three_attempts(submitter, fake_ledger, payer_keypair):
    fake_ledger.send_errors = [BlockhashExpiredError("Blockhash not found") for _ in range(5)]
    signer = CountingSigner(payer_keypair)
    with pytest.raises(BlockhashExpiredError):
        asyncio.run(submitter.pay(str(payer_keypair.pubkey()), signer))
    assert signer.calls == 3


def test_user_rejection_is_terminal(submitter, fake_ledger, payer_keypair):
    signer = CountingSigner(payer_keypair, reject=True)
    with pytest.raises(UserRejectedError):
        asyncio.run(submitter.pay(str(payer_keypair.pubkey()), signer))
    assert signer.calls == 1
    assert fake_ledger.sent == []


def test_other_ledger_errors_not_retried(submitter, fake_ledger, payer_keypair):
    fake_ledger.send_errors = [LedgerError("insufficient funds")]
    signer = CountingSigner(payer_keypair)
    with pytest.raises(LedgerError):
        asyncio.run(submitter.pay(str(payer_keypair.pubkey()), signer))
    assert signer.calls == 1


def test_async_signer_supported(submitter, payer_keypair):
    sign = keypair_signer(payer_keypair)

    async def wallet_sign(built):
        return bytes(sign(built))

    assert asyncio.run(submitter.pay(str(payer_keypair.pubkey()), wallet_sign))


def test_signed_transaction_verifies(fake_ledger, settings, payer_keypair):
    builder = PaymentTransactionBuilder(fake_ledger, settings)
    built = asyncio.run(builder.build(str(payer_keypair.pubkey())))
    tx = keypair_signer(payer_keypair)(built)
    assert tx.signatures[0] != Signature.default()
    tx.verify()


def test_load_keypair_formats():
    kp = Keypair()
    secret = bytes(kp)
    assert load_keypair(base58.b58encode(secret).decode()).pubkey() == kp.pubkey()
    assert load_keypair(json.dumps(list(secret))).pubkey() == kp.pubkey()
    with pytest.raises(ValueError):
        load_keypair("not a key")


def test_max_attempts_must_be_positive(fake_ledger, settings):
    with pytest.raises(ValueError):
        PaymentSubmitter(PaymentTransactionBuilder(fake_ledger, settings), fake_ledger, max_attempts=0)
