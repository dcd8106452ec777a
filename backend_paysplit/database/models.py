"""
SQLAlchemy models: users, referral earnings, used payment signatures.

Amounts are stored as integer minor units of the settlement token.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _now() -> int:
    return int(time.time())


class User(Base):
    """A wallet known to the platform, optionally referred by another user."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), unique=True, nullable=False, index=True)
    referred_by_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    created_at = Column(Integer, nullable=False, default=_now)  # Unix

    referred_by = relationship("User", remote_side=[id], backref="referrals")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "wallet_address": self.wallet_address,
            "referred_by_id": self.referred_by_id,
            "created_at": self.created_at,
        }


class ReferralEarning(Base):
    """
    Commission owed to a referrer for one verified payment by their downline.
    tx_signature is unique: at most one earning per payment.
    """

    __tablename__ = "referral_earnings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    referrer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    downline_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    tx_signature = Column(String(128), unique=True, nullable=False, index=True)
    commission_amount = Column(BigInteger, nullable=False)
    total_fee = Column(BigInteger, nullable=False)
    created_at = Column(Integer, nullable=False, default=_now, index=True)

    referrer = relationship("User", foreign_keys=[referrer_id])
    downline = relationship("User", foreign_keys=[downline_id])


class UsedSignature(Base):
    """Payment signature already accepted. Unique constraint makes check-and-mark atomic."""

    __tablename__ = "used_signatures"

    id = Column(Integer, primary_key=True, autoincrement=True)
    signature = Column(String(128), unique=True, nullable=False)
    created_at = Column(Integer, nullable=False, default=_now, index=True)
