"""
Settlement package — turns a verified payment into an unlocked paid action and a referral record.
"""

from backend_paysplit.settlement.orchestrator import (
    AcceptedAnalysisProvider,
    AnalysisProvider,
    AnalysisRequest,
    ReferralCommission,
    SettlementOrchestrator,
    SettlementOutcome,
    persist_referral_commission,
)

__all__ = [
    "AcceptedAnalysisProvider",
    "AnalysisProvider",
    "AnalysisRequest",
    "ReferralCommission",
    "SettlementOrchestrator",
    "SettlementOutcome",
    "persist_referral_commission",
]
