"""
Persistence layer: used payment signatures, users, referral earnings.

SQLite by default (PAYSPLIT_DB_PATH); PostgreSQL when PAYSPLIT_DB_URL / DATABASE_URL is set.
"""

from backend_paysplit.database.models import Base, ReferralEarning, UsedSignature, User
from backend_paysplit.database.referrals import (
    get_or_create_user,
    get_referral_stats,
    list_referral_earnings,
    record_referral_earning,
    register_referral,
)
from backend_paysplit.database.session import (
    get_database_url,
    init_db,
    reset_engine_for_test,
    session_scope,
)

__all__ = [
    "Base",
    "ReferralEarning",
    "UsedSignature",
    "User",
    "get_or_create_user",
    "get_referral_stats",
    "list_referral_earnings",
    "record_referral_earning",
    "register_referral",
    "get_database_url",
    "init_db",
    "reset_engine_for_test",
    "session_scope",
]
