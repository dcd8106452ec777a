"""
Settlement orchestrator: verify a payment, unlock the paid action, record referral commission.

The paid action runs at most once per verified signature, and only after
verification succeeded. Referral recording is scheduled as a background task
whose failure is logged and never affects the payer's outcome.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from backend_paysplit.config.settings import PaymentSettings
from backend_paysplit.core.exceptions import ConfigurationError, ErrorKind, PaidActionError
from backend_paysplit.database.referrals import record_referral_earning
from backend_paysplit.payments.splitter import split_for_settings
from backend_paysplit.payments.verifier import PaymentVerifier, VerificationResult
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ReferralCommission:
    """Commission owed to referrer for one verified payment by payer (minor units)."""

    referrer: str
    payer: str
    signature: str
    commission_amount: int
    total_fee: int


ReferralHook = Callable[[ReferralCommission], Awaitable[Any]]


@dataclass(frozen=True)
class SettlementOutcome:
    """ok: the paid action may run. verified: a ledger payment was actually checked."""

    ok: bool
    verified: bool
    error: ErrorKind | None = None
    verification: VerificationResult | None = None
    referral_scheduled: bool = False

    @property
    def http_status(self) -> int:
        return 200 if self.ok else (self.error.http_status if self.error else 402)

    @property
    def error_message(self) -> str | None:
        return self.error.message if self.error else None


@dataclass
class AnalysisRequest:
    """What the payer asked to have analysed. Opaque to payment logic."""

    token_symbol: str
    exchange: str
    wallet_address: str
    token_name: str | None = None
    token_id: str | None = None
    current_price: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)


class AnalysisProvider(Protocol):
    """Generates the paid analysis. Market data, sentiment, and LLM calls live behind this."""

    async def generate(self, request: AnalysisRequest) -> dict[str, Any]: ...


class AcceptedAnalysisProvider:
    """Default provider: acknowledges the request; deployments plug in the real generator."""

    async def generate(self, request: AnalysisRequest) -> dict[str, Any]:
        return {
            "status": "accepted",
            "tokenSymbol": request.token_symbol,
            "tokenName": request.token_name,
            "exchange": request.exchange,
            "currentPrice": request.current_price,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


async def persist_referral_commission(commission: ReferralCommission) -> bool:
    """Default referral hook: insert the earning in the database off the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        lambda: record_referral_earning(
            commission.referrer,
            commission.payer,
            commission.signature,
            commission.commission_amount,
            commission.total_fee,
        ),
    )


class SettlementOrchestrator:
    """
    Coordinates verifier, paid action, and referral hook for one payment.

    referral_hook defaults to persist_referral_commission. drain() awaits any
    referral tasks still running (shutdown, tests).
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        settings: PaymentSettings,
        *,
        referral_hook: Optional[ReferralHook] = None,
    ) -> None:
        self._verifier = verifier
        self._settings = settings
        self._referral_hook = referral_hook or persist_referral_commission
        self._pending: set[asyncio.Task] = set()

    @property
    def pending_referrals(self) -> int:
        return len(self._pending)

    async def settle_payment(
        self,
        payer: str,
        signature: str | None,
        referrer: str | None = None,
    ) -> SettlementOutcome:
        payer = (payer or "").strip()
        referrer = (referrer or "").strip() or None
        if referrer == payer:
            logger.info("settlement_self_referral_ignored", payer=short(payer))
            referrer = None

        if not (signature or "").strip():
            if self._settings.allow_unverified:
                logger.warning("settlement_unverified_dev_mode", payer=short(payer), app_env=self._settings.app_env)
                return SettlementOutcome(ok=True, verified=False)
            logger.info("settlement_rejected", payer=short(payer), error_kind=ErrorKind.SIGNATURE_REQUIRED.value)
            return SettlementOutcome(ok=False, verified=False, error=ErrorKind.SIGNATURE_REQUIRED)

        signature = signature.strip()
        result = await self._verifier.verify(signature, expected_payer=payer or None, referrer=referrer)
        if not result.verified:
            return SettlementOutcome(ok=False, verified=False, error=result.error, verification=result)

        scheduled = False
        if referrer is not None:
            scheduled = self._schedule_referral(payer, signature, referrer, result)
        logger.info(
            "settlement_ok",
            payer=short(payer),
            signature=short(signature),
            amount_received=result.amount_received,
            referral_scheduled=scheduled,
        )
        return SettlementOutcome(ok=True, verified=True, verification=result, referral_scheduled=scheduled)

    def _schedule_referral(self, payer: str, signature: str, referrer: str, result: VerificationResult) -> bool:
        try:
            split = split_for_settings(self._settings, has_referrer=True)
        except ConfigurationError as e:
            logger.error("referral_record_failed", signature=short(signature), error=str(e))
            return False
        # Commission is credited only when the ledger shows it reached the referrer
        if split.referral_commission <= 0 or result.referral_received < split.referral_commission:
            logger.info(
                "referral_not_paid_on_chain",
                referrer=short(referrer),
                signature=short(signature),
                referral_received=result.referral_received,
                commission_amount=split.referral_commission,
            )
            return False
        commission = ReferralCommission(
            referrer=referrer,
            payer=payer,
            signature=signature,
            commission_amount=split.referral_commission,
            total_fee=split.total,
        )
        task = asyncio.get_running_loop().create_task(self._record_referral(commission))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def _record_referral(self, commission: ReferralCommission) -> None:
        try:
            await self._referral_hook(commission)
        except Exception as e:
            logger.error(
                "referral_record_failed",
                referrer=short(commission.referrer),
                payer=short(commission.payer),
                signature=short(commission.signature),
                error=str(e),
            )

    async def drain(self) -> None:
        """Wait for scheduled referral recordings to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def settle_and_run(
        self,
        payer: str,
        signature: str | None,
        referrer: str | None,
        action: Callable[[], Awaitable[T]],
    ) -> tuple[SettlementOutcome, T | None]:
        """
        Settle, then run action exactly once if settlement succeeded.

        Raises PaidActionError if the action fails after a successful payment.
        """
        outcome = await self.settle_payment(payer, signature, referrer)
        if not outcome.ok:
            return outcome, None
        try:
            return outcome, await action()
        except Exception as e:
            logger.error(
                "paid_action_failed",
                payer=short(payer),
                signature=short(signature or ""),
                verified=outcome.verified,
                error=str(e),
            )
            raise PaidActionError("Failed to generate analysis") from e
