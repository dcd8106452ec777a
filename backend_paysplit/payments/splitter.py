"""
Fee splitter: divide the analysis fee between platform recipients and an optional referrer.

All amounts are integer minor units of the settlement token (USDC: 6 decimals,
1 USDC = 1_000_000). Each recipient but the last gets floor(amount * pct / 100);
the last absorbs the remainder so no minor unit is lost or created.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from backend_paysplit.config.settings import PaymentSettings, RecipientShare
from backend_paysplit.core.exceptions import ConfigurationError

USDC_DECIMALS = 6


@dataclass(frozen=True)
class FeeSplit:
    """How one payment is divided. referral_commission + sum(platform_amounts) == total."""

    referral_commission: int
    platform_amounts: tuple[int, ...]
    total: int

    @property
    def amount1(self) -> int:
        return self.platform_amounts[0] if self.platform_amounts else 0

    @property
    def amount2(self) -> int:
        return self.platform_amounts[1] if len(self.platform_amounts) > 1 else 0

    @property
    def platform_total(self) -> int:
        return sum(self.platform_amounts)

    def to_dict(self) -> dict[str, int | list[int]]:
        return {
            "referralCommission": self.referral_commission,
            "amount1": self.amount1,
            "amount2": self.amount2,
            "platformAmounts": list(self.platform_amounts),
            "total": self.total,
        }


def to_minor_units(amount: Decimal | str | int | float, decimals: int = USDC_DECIMALS) -> int:
    """Convert a decimal token amount to integer minor units: round(amount * 10**decimals)."""
    value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    if value < 0:
        raise ConfigurationError(f"Fee amount must be non-negative, got {value}")
    scaled = value * (Decimal(10) ** decimals)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, decimals: int = USDC_DECIMALS) -> Decimal:
    return Decimal(amount) / (Decimal(10) ** decimals)


def _validate_percentages(recipients: Sequence[RecipientShare], referral_pct: int) -> None:
    if not recipients:
        raise ConfigurationError("At least one payment recipient must be configured")
    if any(r.percentage < 0 for r in recipients):
        raise ConfigurationError("Recipient percentages must be non-negative")
    total_pct = sum(r.percentage for r in recipients)
    if total_pct != 100:
        raise ConfigurationError(f"Recipient percentages must sum to 100, got {total_pct}")
    if not 0 <= referral_pct <= 100:
        raise ConfigurationError(f"Referral commission percentage must be 0-100, got {referral_pct}")


def split_amount(amount: int, recipients: Sequence[RecipientShare]) -> tuple[int, ...]:
    """Floor-split amount by percentage; last recipient takes the remainder."""
    shares: list[int] = []
    for r in recipients[:-1]:
        shares.append(amount * r.percentage // 100)
    shares.append(amount - sum(shares))
    return tuple(shares)


def compute_split(
    fee: Decimal | str | int | float,
    recipients: Sequence[RecipientShare],
    *,
    has_referrer: bool,
    referral_pct: int = 10,
    decimals: int = USDC_DECIMALS,
) -> FeeSplit:
    """
    Compute the FeeSplit for one payment.

    No referrer: the whole total is split across recipients.
    Referrer: commission = floor(total * referral_pct / 100) first, the remainder is split.
    """
    _validate_percentages(recipients, referral_pct)
    total = to_minor_units(fee, decimals)
    commission = total * referral_pct // 100 if has_referrer else 0
    platform = split_amount(total - commission, recipients)
    return FeeSplit(referral_commission=commission, platform_amounts=platform, total=total)


def split_for_settings(settings: PaymentSettings, *, has_referrer: bool) -> FeeSplit:
    """compute_split using the configured price, recipients, and commission."""
    return compute_split(
        settings.analysis_price,
        settings.recipients,
        has_referrer=has_referrer,
        referral_pct=settings.referral_commission_pct,
        decimals=settings.token_decimals,
    )
