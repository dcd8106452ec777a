"""
Referral bookkeeping: users, referrer registration, commission earnings, stats.

record_referral_earning is the hook the settlement orchestrator calls once per
verified payment with a referrer. The unique tx_signature column makes it
idempotent at the persistence layer as well.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend_paysplit.database.models import ReferralEarning, User
from backend_paysplit.database.session import session_scope
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

RECENT_EARNINGS_LIMIT = 20


def _validate_wallet(wallet: str) -> str:
    """Validate a Solana wallet with solders Pubkey. Raises ValueError if invalid."""
    wallet = (wallet or "").strip()
    if not wallet:
        raise ValueError("wallet must be non-empty")
    try:
        from solders.pubkey import Pubkey
        Pubkey.from_string(wallet)
    except Exception as e:
        raise ValueError(f"Invalid Solana wallet: {e}") from e
    return wallet


def _get_or_create_user(session: Session, wallet: str) -> User:
    user = session.query(User).filter(User.wallet_address == wallet).first()
    if user is None:
        user = User(wallet_address=wallet)
        session.add(user)
        session.flush()
    return user


def get_or_create_user(wallet: str) -> dict[str, Any]:
    wallet = _validate_wallet(wallet)
    try:
        with session_scope() as session:
            return _get_or_create_user(session, wallet).to_dict()
    except IntegrityError:
        # Lost a concurrent insert race; the row exists now.
        with session_scope() as session:
            return _get_or_create_user(session, wallet).to_dict()


def register_referral(wallet: str, referrer_wallet: str | None) -> tuple[bool, str]:
    """
    Register wallet as a user, linking it to referrer_wallet when given.

    Self-referral raises ValueError. An existing referrer is never replaced.
    Returns (has_referrer, message).
    """
    wallet = _validate_wallet(wallet)
    referrer_wallet = _validate_wallet(referrer_wallet) if referrer_wallet else None
    if referrer_wallet == wallet:
        raise ValueError("Cannot refer yourself")
    with session_scope() as session:
        user = session.query(User).filter(User.wallet_address == wallet).first()
        if user is not None and user.referred_by_id is not None:
            return True, "User already has a referrer"
        referrer = _get_or_create_user(session, referrer_wallet) if referrer_wallet else None
        if user is None:
            user = User(wallet_address=wallet, referred_by_id=referrer.id if referrer else None)
            session.add(user)
        elif referrer is not None:
            user.referred_by_id = referrer.id
        session.flush()
    if referrer_wallet:
        logger.info("referral_registered", wallet=short(wallet), referrer=short(referrer_wallet))
        return True, "Referral registered successfully"
    return False, "User registered"


def record_referral_earning(
    referrer_wallet: str,
    downline_wallet: str,
    tx_signature: str,
    commission_amount: int,
    total_fee: int,
) -> bool:
    """
    Insert one referral earning keyed by tx_signature.

    The referrer must already be a registered user; the downline is created if
    needed. Returns True if inserted, False if the referrer is unknown or an
    earning for this signature already exists.
    """
    referrer_wallet = _validate_wallet(referrer_wallet)
    downline_wallet = _validate_wallet(downline_wallet)
    if referrer_wallet == downline_wallet:
        raise ValueError("Cannot earn commission on your own payment")
    try:
        with session_scope() as session:
            referrer = session.query(User).filter(User.wallet_address == referrer_wallet).first()
            if referrer is None:
                logger.info("referral_referrer_unknown", referrer=short(referrer_wallet), signature=short(tx_signature))
                return False
            downline = _get_or_create_user(session, downline_wallet)
            session.add(
                ReferralEarning(
                    referrer_id=referrer.id,
                    downline_id=downline.id,
                    tx_signature=tx_signature,
                    commission_amount=int(commission_amount),
                    total_fee=int(total_fee),
                )
            )
            session.flush()
    except IntegrityError:
        logger.info("referral_earning_duplicate", signature=short(tx_signature))
        return False
    logger.info(
        "referral_earning_recorded",
        referrer=short(referrer_wallet),
        downline=short(downline_wallet),
        signature=short(tx_signature),
        commission_amount=commission_amount,
    )
    return True


def list_referral_earnings(tx_signature: str | None = None) -> list[dict[str, Any]]:
    with session_scope() as session:
        q = session.query(ReferralEarning)
        if tx_signature:
            q = q.filter(ReferralEarning.tx_signature == tx_signature)
        return [
            {
                "id": e.id,
                "referrer": e.referrer.wallet_address,
                "downline": e.downline.wallet_address,
                "tx_signature": e.tx_signature,
                "commission_amount": e.commission_amount,
                "total_fee": e.total_fee,
                "created_at": e.created_at,
            }
            for e in q.order_by(ReferralEarning.id).all()
        ]


def _empty_stats(referral_link: str) -> dict[str, Any]:
    return {
        "referralLink": referral_link,
        "downlineCount": 0,
        "totalEarnings": 0,
        "totalEarningsUsdc": "0",
        "recentEarnings": [],
        "downlines": [],
        "referredBy": None,
    }


def get_referral_stats(wallet: str, base_url: str, *, decimals: int = 6) -> dict[str, Any]:
    """Referral link, downlines, and earnings for a wallet. Amounts in minor units plus a decimal string."""
    wallet = (wallet or "").strip()
    if not wallet:
        return _empty_stats("")
    referral_link = f"{base_url.rstrip('/')}/?ref={wallet}"
    with session_scope() as session:
        user = session.query(User).filter(User.wallet_address == wallet).first()
        if user is None:
            return _empty_stats(referral_link)
        total = (
            session.query(func.coalesce(func.sum(ReferralEarning.commission_amount), 0))
            .filter(ReferralEarning.referrer_id == user.id)
            .scalar()
        )
        recent = (
            session.query(ReferralEarning)
            .filter(ReferralEarning.referrer_id == user.id)
            .order_by(ReferralEarning.created_at.desc(), ReferralEarning.id.desc())
            .limit(RECENT_EARNINGS_LIMIT)
            .all()
        )
        downlines = sorted(user.referrals, key=lambda u: (u.created_at, u.id), reverse=True)
        return {
            "referralLink": referral_link,
            "downlineCount": len(downlines),
            "totalEarnings": int(total),
            "totalEarningsUsdc": format((Decimal(int(total)) / (Decimal(10) ** decimals)).normalize(), "f"),
            "recentEarnings": [
                {
                    "id": e.id,
                    "downlineWallet": e.downline.wallet_address,
                    "commissionAmount": e.commission_amount,
                    "totalFee": e.total_fee,
                    "txSignature": e.tx_signature,
                    "createdAt": e.created_at,
                }
                for e in recent
            ],
            "downlines": [
                {"walletAddress": d.wallet_address, "joinedAt": d.created_at}
                for d in downlines
            ],
            "referredBy": user.referred_by.wallet_address if user.referred_by else None,
        }
