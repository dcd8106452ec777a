"""
Tests for PaymentVerifier: check order, amount and age boundaries, replay, ledger failures.
"""

from __future__ import annotations

import asyncio
import threading

import pytest
from structlog.testing import capture_logs

from backend_paysplit.core.exceptions import ErrorKind, LedgerTimeoutError
from backend_paysplit.payments.builder import associated_token_address
from backend_paysplit.payments.replay_guard import InMemoryReplayGuard
from backend_paysplit.payments.verifier import PaymentVerifier, minimum_accepted

from conftest import NOW, OTHER_MINT, USDC_MINT, new_signature, new_wallet


@pytest.fixture
def guard():
    return InMemoryReplayGuard()


@pytest.fixture
def verifier(fake_ledger, guard, settings):
    return PaymentVerifier(fake_ledger, guard, settings, clock=lambda: NOW)


@pytest.fixture
def platform_accounts(settings):
    return [associated_token_address(r.address, USDC_MINT) for r in settings.recipients]


@pytest.fixture
def pay(fake_ledger, make_payment_tx, platform_accounts):
    """Record a payment on the fake ledger and return its signature."""

    def _pay(payer: str, amounts: tuple[int, int] = (150_000, 150_000), **kwargs) -> str:
        signature = new_signature()
        credits = dict(zip(platform_accounts, amounts))
        credits.update(kwargs.pop("extra_credits", {}))
        fake_ledger.transactions[signature] = make_payment_tx(signature, payer, credits, **kwargs)
        return signature

    return _pay


def test_exact_payment_verified(verifier, guard, pay):
    payer = new_wallet()
    signature = pay(payer)
    result = asyncio.run(verifier.verify(signature, expected_payer=payer))
    assert result.verified is True
    assert result.error is None
    assert result.amount_received == 300_000
    assert result.expected_total == 300_000
    assert guard.contains(signature)


def test_replay_rejected_without_ledger_call(verifier, fake_ledger, pay):
    signature = pay(new_wallet())
    assert asyncio.run(verifier.verify(signature)).verified is True
    second = asyncio.run(verifier.verify(signature))
    assert second.verified is False
    assert second.error is ErrorKind.ALREADY_USED
    assert fake_ledger.get_transaction_calls == 1


def test_concurrent_verifications_single_winner(verifier, pay):
    signature = pay(new_wallet())

    async def _race():
        return await asyncio.gather(*(verifier.verify(signature) for _ in range(10)))

    results = asyncio.run(_race())
    assert sum(r.verified for r in results) == 1
    assert {r.error for r in results if not r.verified} == {ErrorKind.ALREADY_USED}


def test_minimum_accepted():
    assert minimum_accepted(300_000, 1) == 297_000
    assert minimum_accepted(300_000, 0) == 300_000


@pytest.mark.parametrize(
    "amounts,verified",
    [
        ((147_000, 147_000), False),  # 98%
        ((149_250, 149_250), True),  # 99.5%
        ((148_500, 148_500), True),  # exactly 99%
        ((148_500, 148_499), False),  # one unit below 99%
        ((200_000, 200_000), True),  # overpayment
    ],
)
def test_amount_tolerance(verifier, pay, amounts, verified):
    result = asyncio.run(verifier.verify(pay(new_wallet(), amounts)))
    assert result.verified is verified
    if not verified:
        assert result.error is ErrorKind.INSUFFICIENT_AMOUNT
        assert result.amount_received == sum(amounts)


@pytest.mark.parametrize(
    "age,verified",
    [(0, True), (299, True), (300, True), (301, False), (3600, False)],
)
def test_age_boundary(verifier, pay, age, verified):
    result = asyncio.run(verifier.verify(pay(new_wallet(), block_time=NOW - age)))
    assert result.verified is verified
    if not verified:
        assert result.error is ErrorKind.TOO_OLD


def test_missing_block_time_fails_closed(verifier, pay):
    result = asyncio.run(verifier.verify(pay(new_wallet(), block_time=None)))
    assert result.error is ErrorKind.TOO_OLD


def test_wrong_mint_never_counted(verifier, pay):
    result = asyncio.run(verifier.verify(pay(new_wallet(), mint=OTHER_MINT)))
    assert result.verified is False
    assert result.error is ErrorKind.NO_AUTHORIZED_PAYMENT
    assert result.amount_received == 0


def test_payment_to_unknown_accounts(verifier, fake_ledger, make_payment_tx):
    signature = new_signature()
    fake_ledger.transactions[signature] = make_payment_tx(signature, new_wallet(), {new_wallet(): 300_000})
    assert asyncio.run(verifier.verify(signature)).error is ErrorKind.NO_AUTHORIZED_PAYMENT


def test_failed_transaction(verifier, guard, pay):
    signature = pay(new_wallet(), err={"InstructionError": [0, "Custom"]})
    result = asyncio.run(verifier.verify(signature))
    assert result.error is ErrorKind.TRANSACTION_FAILED
    assert not guard.contains(signature)


def test_not_found(verifier):
    assert asyncio.run(verifier.verify(new_signature())).error is ErrorKind.NOT_FOUND


def test_malformed_signature_skips_ledger(verifier, fake_ledger):
    result = asyncio.run(verifier.verify("definitely-not-a-signature"))
    assert result.error is ErrorKind.NOT_FOUND
    assert fake_ledger.get_transaction_calls == 0


@pytest.mark.parametrize("error", [LedgerTimeoutError("timed out"), None])
def test_ledger_failure_fails_closed(verifier, fake_ledger, guard, pay, ledger_error, error):
    signature = pay(new_wallet())
    fake_ledger.fail_with = error or ledger_error
    result = asyncio.run(verifier.verify(signature))
    assert result.error is ErrorKind.NETWORK_OR_TIMEOUT
    assert not guard.contains(signature)
    # Retry succeeds once the ledger is reachable again
    fake_ledger.fail_with = None
    assert asyncio.run(verifier.verify(signature)).verified is True


def test_payer_mismatch(verifier, pay):
    signature = pay(new_wallet())
    result = asyncio.run(verifier.verify(signature, expected_payer=new_wallet()))
    assert result.error is ErrorKind.PAYER_MISMATCH


def test_referral_payment_counted_whole(verifier, pay):
    payer, referrer = new_wallet(), new_wallet()
    referrer_ata = associated_token_address(referrer, USDC_MINT)
    signature = pay(payer, (135_000, 135_000), extra_credits={referrer_ata: 30_000})
    result = asyncio.run(verifier.verify(signature, expected_payer=payer, referrer=referrer))
    assert result.verified is True
    assert result.amount_received == 300_000
    assert result.referral_received == 30_000


def test_referrer_cannot_absorb_platform_share(verifier, fake_ledger, make_payment_tx, platform_accounts):
    payer, own_second_wallet = new_wallet(), new_wallet()
    signature = new_signature()
    fake_ledger.transactions[signature] = make_payment_tx(
        signature,
        payer,
        {platform_accounts[0]: 1, associated_token_address(own_second_wallet, USDC_MINT): 299_999},
    )
    result = asyncio.run(verifier.verify(signature, expected_payer=payer, referrer=own_second_wallet))
    assert result.verified is False
    assert result.error is ErrorKind.INSUFFICIENT_AMOUNT
    assert result.amount_received == 1 + 30_000


def test_referrer_overpayment_counts_only_commission(verifier, pay):
    payer, referrer = new_wallet(), new_wallet()
    referrer_ata = associated_token_address(referrer, USDC_MINT)
    signature = pay(payer, (135_000, 135_000), extra_credits={referrer_ata: 100_000})
    result = asyncio.run(verifier.verify(signature, expected_payer=payer, referrer=referrer))
    assert result.verified is True
    assert result.amount_received == 300_000
    assert result.referral_received == 100_000


def test_unpaid_referrer_reported_as_zero(verifier, pay):
    payer, referrer = new_wallet(), new_wallet()
    signature = pay(payer, (135_000, 135_000))
    result = asyncio.run(verifier.verify(signature, expected_payer=payer, referrer=referrer))
    assert result.verified is True
    assert result.referral_received == 0


def test_guard_runs_off_event_loop_thread(fake_ledger, settings, pay):
    class ThreadRecordingGuard(InMemoryReplayGuard):
        def __init__(self) -> None:
            super().__init__()
            self.threads: set[int] = set()

        def contains(self, signature: str) -> bool:
            self.threads.add(threading.get_ident())
            return super().contains(signature)

        def mark_used(self, signature: str) -> bool:
            self.threads.add(threading.get_ident())
            return super().mark_used(signature)

    guard = ThreadRecordingGuard()
    verifier = PaymentVerifier(fake_ledger, guard, settings, clock=lambda: NOW)
    assert asyncio.run(verifier.verify(pay(new_wallet()))).verified is True
    assert guard.threads
    assert threading.get_ident() not in guard.threads


def test_referral_share_not_counted_without_referrer(verifier, pay):
    referrer_ata = associated_token_address(new_wallet(), USDC_MINT)
    signature = pay(new_wallet(), (135_000, 135_000), extra_credits={referrer_ata: 30_000})
    result = asyncio.run(verifier.verify(signature))
    assert result.error is ErrorKind.INSUFFICIENT_AMOUNT
    assert result.amount_received == 270_000


def test_referrer_only_payment_is_not_authorized(verifier, fake_ledger, make_payment_tx):
    payer, referrer = new_wallet(), new_wallet()
    signature = new_signature()
    referrer_ata = associated_token_address(referrer, USDC_MINT)
    fake_ledger.transactions[signature] = make_payment_tx(signature, payer, {referrer_ata: 300_000})
    result = asyncio.run(verifier.verify(signature, referrer=referrer))
    assert result.error is ErrorKind.NO_AUTHORIZED_PAYMENT


def test_missing_recipients_is_configuration_invalid(verifier, settings, pay):
    signature = pay(new_wallet())
    settings.recipients = ()
    assert asyncio.run(verifier.verify(signature)).error is ErrorKind.CONFIGURATION_INVALID


def test_result_to_dict(verifier, pay):
    result = asyncio.run(verifier.verify(pay(new_wallet(), (100_000, 100_000))))
    assert result.to_dict() == {
        "verified": False,
        "error": "insufficient_amount",
        "errorMessage": "Insufficient payment amount",
        "amountReceived": 200_000,
        "expectedTotal": 300_000,
        "referralReceived": 0,
    }


def test_log_events_named_by_outcome(verifier, pay):
    with capture_logs() as logs:
        asyncio.run(verifier.verify(pay(new_wallet())))
        asyncio.run(verifier.verify(new_signature()))
    events = [entry["event"] for entry in logs]
    assert "payment_verified" in events
    assert "payment_verify_rejected" in events
    assert all("event_type" not in entry for entry in logs)
