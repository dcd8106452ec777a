"""
Payments package — fee splitting, transaction building, verification, replay protection.

Builder and verifier share the splitter so the amounts a wallet is asked to pay
and the amounts the verifier expects are computed by the same code.
"""

from backend_paysplit.payments.builder import (
    BuiltTransaction,
    PaymentTransactionBuilder,
    PlannedTransfer,
    associated_token_address,
)
from backend_paysplit.payments.replay_guard import (
    InMemoryReplayGuard,
    ReplayGuard,
    SQLReplayGuard,
)
from backend_paysplit.payments.splitter import (
    FeeSplit,
    compute_split,
    from_minor_units,
    split_amount,
    split_for_settings,
    to_minor_units,
)
from backend_paysplit.payments.submitter import PaymentSubmitter, keypair_signer, load_keypair
from backend_paysplit.payments.verifier import PaymentVerifier, VerificationResult

__all__ = [
    "BuiltTransaction",
    "PaymentTransactionBuilder",
    "PlannedTransfer",
    "associated_token_address",
    "InMemoryReplayGuard",
    "ReplayGuard",
    "SQLReplayGuard",
    "FeeSplit",
    "compute_split",
    "from_minor_units",
    "split_amount",
    "split_for_settings",
    "to_minor_units",
    "PaymentSubmitter",
    "keypair_signer",
    "load_keypair",
    "PaymentVerifier",
    "VerificationResult",
]
