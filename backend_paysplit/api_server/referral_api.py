"""
FastAPI router: POST /referral/register, GET /referral/stats.

Registration links a wallet to its referrer once; stats report the referral
link, downlines, and commission earned.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from backend_paysplit.api_server.deps import PaymentServices, get_services
from backend_paysplit.database.referrals import get_referral_stats, register_referral
from backend_paysplit.paysplit_logging import get_logger, short

logger = get_logger(__name__)

router = APIRouter(prefix="/referral")

DEFAULT_BASE_URL = "http://localhost:3000"


class RegisterReferralRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wallet_address: str = Field(..., alias="walletAddress", min_length=1, max_length=64)
    referrer_wallet: str | None = Field(None, alias="referrerWallet", max_length=64)


@router.post("/register")
def register(body: RegisterReferralRequest) -> dict[str, Any]:
    """Register a wallet, with its referrer if given. Self-referral is rejected."""
    try:
        has_referrer, message = register_referral(body.wallet_address, body.referrer_wallet)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.exception("referral_register_failed", wallet=short(body.wallet_address), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to register referral") from e
    return {"success": True, "hasReferrer": has_referrer, "message": message}


@router.get("/stats")
def stats(
    wallet_address: str = Query(..., alias="walletAddress", min_length=1),
    services: PaymentServices = Depends(get_services),
) -> dict[str, Any]:
    """Referral link, downlines, and earnings for walletAddress."""
    base_url = services.settings.public_base_url or DEFAULT_BASE_URL
    try:
        return get_referral_stats(wallet_address, base_url, decimals=services.settings.token_decimals)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except Exception as e:
        logger.exception("referral_stats_failed", wallet=short(wallet_address), error=str(e))
        raise HTTPException(status_code=500, detail="Failed to fetch referral stats") from e
