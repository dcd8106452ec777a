"""
Tests for the fee splitter: minor-unit conversion, split invariant, rounding, config errors.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend_paysplit.config.settings import RecipientShare
from backend_paysplit.core.exceptions import ConfigurationError
from backend_paysplit.payments.splitter import (
    compute_split,
    from_minor_units,
    split_amount,
    split_for_settings,
    to_minor_units,
)

HALF_HALF = (RecipientShare("a", 50), RecipientShare("b", 50))


def test_to_minor_units():
    assert to_minor_units("0.30") == 300_000
    assert to_minor_units(Decimal("1")) == 1_000_000
    assert to_minor_units("0.0000005") == 1  # half-up
    assert to_minor_units("0.0000004") == 0
    assert to_minor_units(0.1) == 100_000
    assert from_minor_units(300_000) == Decimal("0.3")


def test_to_minor_units_rejects_negative():
    with pytest.raises(ConfigurationError):
        to_minor_units("-0.01")


def test_direct_split_half_half():
    split = compute_split("0.30", HALF_HALF, has_referrer=False)
    assert split.referral_commission == 0
    assert split.amount1 == 150_000
    assert split.amount2 == 150_000
    assert split.total == 300_000


def test_split_with_referral():
    split = compute_split("0.30", HALF_HALF, has_referrer=True)
    assert split.referral_commission == 30_000
    assert split.amount1 == 135_000
    assert split.amount2 == 135_000
    assert split.total == 300_000
    assert split.to_dict() == {
        "referralCommission": 30_000,
        "amount1": 135_000,
        "amount2": 135_000,
        "platformAmounts": [135_000, 135_000],
        "total": 300_000,
    }


def test_last_recipient_absorbs_remainder():
    shares = (RecipientShare("a", 33), RecipientShare("b", 33), RecipientShare("c", 34))
    assert split_amount(100_001, shares) == (33_000, 33_000, 34_001)
    split = compute_split("0.000001", HALF_HALF, has_referrer=False)
    assert split.platform_amounts == (0, 1)


@pytest.mark.parametrize("fee", ["0.30", "0.000007", "1.234567", "12345.678901", "0"])
@pytest.mark.parametrize("has_referrer", [False, True])
@pytest.mark.parametrize("pcts", [(50, 50), (70, 30), (1, 99), (100,), (33, 33, 34)])
def test_split_invariant(fee, has_referrer, pcts):
    recipients = tuple(RecipientShare(f"r{i}", p) for i, p in enumerate(pcts))
    split = compute_split(fee, recipients, has_referrer=has_referrer, referral_pct=10)
    assert split.referral_commission + sum(split.platform_amounts) == split.total
    assert all(a >= 0 for a in split.platform_amounts)
    assert split.referral_commission >= 0
    assert len(split.platform_amounts) == len(recipients)


def test_zero_fee_all_zero():
    split = compute_split("0", HALF_HALF, has_referrer=True)
    assert split.total == 0
    assert split.referral_commission == 0
    assert split.platform_amounts == (0, 0)


@pytest.mark.parametrize(
    "recipients",
    [
        (),
        (RecipientShare("a", 60), RecipientShare("b", 50)),
        (RecipientShare("a", 40), RecipientShare("b", 50)),
        (RecipientShare("a", 110), RecipientShare("b", -10)),
    ],
)
def test_invalid_percentages_are_reported(recipients):
    with pytest.raises(ConfigurationError):
        compute_split("0.30", recipients, has_referrer=False)


def test_invalid_referral_pct():
    with pytest.raises(ConfigurationError):
        compute_split("0.30", HALF_HALF, has_referrer=True, referral_pct=101)


def test_split_for_settings(settings):
    assert split_for_settings(settings, has_referrer=False).platform_amounts == (150_000, 150_000)
    assert split_for_settings(settings, has_referrer=True).referral_commission == 30_000
