"""
App-scoped payment services for the API: settings, ledger client, replay guard,
builder, verifier, orchestrator, analysis provider.

Built once per process by get_services(); tests swap the whole container with
app.dependency_overrides[get_services].
"""

from __future__ import annotations

from dataclasses import dataclass

from backend_paysplit.config.settings import PaymentSettings, get_settings
from backend_paysplit.ledger.rpc import SolanaLedgerClient
from backend_paysplit.payments.builder import PaymentTransactionBuilder
from backend_paysplit.payments.replay_guard import ReplayGuard, SQLReplayGuard
from backend_paysplit.payments.verifier import PaymentVerifier
from backend_paysplit.settlement.orchestrator import (
    AcceptedAnalysisProvider,
    AnalysisProvider,
    SettlementOrchestrator,
)


@dataclass
class PaymentServices:
    settings: PaymentSettings
    ledger: SolanaLedgerClient
    guard: ReplayGuard
    builder: PaymentTransactionBuilder
    verifier: PaymentVerifier
    orchestrator: SettlementOrchestrator
    provider: AnalysisProvider

    async def aclose(self) -> None:
        await self.orchestrator.drain()
        await self.ledger.aclose()


def build_services(
    settings: PaymentSettings,
    ledger=None,
    guard: ReplayGuard | None = None,
    provider: AnalysisProvider | None = None,
    referral_hook=None,
) -> PaymentServices:
    """Wire services from settings. ledger/guard/provider/referral_hook override the defaults."""
    ledger = ledger or SolanaLedgerClient(settings.solana_rpc_url, timeout_sec=settings.rpc_timeout_sec)
    guard = guard or SQLReplayGuard(settings.replay_guard_capacity, settings.replay_guard_evict_batch)
    verifier = PaymentVerifier(ledger, guard, settings)
    return PaymentServices(
        settings=settings,
        ledger=ledger,
        guard=guard,
        builder=PaymentTransactionBuilder(ledger, settings),
        verifier=verifier,
        orchestrator=SettlementOrchestrator(verifier, settings, referral_hook=referral_hook),
        provider=provider or AcceptedAnalysisProvider(),
    )


_services: PaymentServices | None = None


def get_services() -> PaymentServices:
    """Dependency: process-wide PaymentServices. Raises ConfigurationError on bad env."""
    global _services
    if _services is None:
        _services = build_services(get_settings())
    return _services


async def close_services() -> None:
    global _services
    if _services is not None:
        await _services.aclose()
        _services = None
