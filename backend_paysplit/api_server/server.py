"""
FastAPI server — payment configuration, transaction building, paid analysis.

POST /api/analysis settles the payment first (verifier + replay guard) and only
then runs the analysis provider. Payment errors map to 402 / 409 / 503 / 500 by
error kind; ledger internals never reach the client beyond the kind.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from backend_paysplit import __version__
from backend_paysplit.api_server.deps import PaymentServices, close_services, get_services
from backend_paysplit.api_server.referral_api import router as referral_router
from backend_paysplit.config.env import load_paysplit_env
from backend_paysplit.core.exceptions import (
    BuildError,
    ConfigurationError,
    ErrorKind,
    LedgerError,
    PaidActionError,
    PayerAccountMissingError,
)
from backend_paysplit.database.session import init_db
from backend_paysplit.payments.builder import associated_token_address, parse_pubkey
from backend_paysplit.payments.splitter import from_minor_units, split_for_settings, to_minor_units
from backend_paysplit.paysplit_logging import get_logger, short
from backend_paysplit.settlement.orchestrator import AnalysisRequest

load_paysplit_env()

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BuildTransactionRequest(_CamelModel):
    """POST /api/payment/transaction body."""

    wallet_address: str = Field(..., alias="walletAddress", min_length=8, max_length=64, description="Payer wallet (base58)")
    referrer_wallet: str | None = Field(None, alias="referrerWallet", max_length=64, description="Referrer wallet, if any")


class BuildTransactionResponse(_CamelModel):
    transaction: str = Field(..., description="Unsigned transaction, base64")
    blockhash: str
    last_valid_block_height: int = Field(..., alias="lastValidBlockHeight")
    split: dict[str, Any]
    transfers: list[dict[str, Any]] = Field(default_factory=list)
    created_accounts: list[str] = Field(default_factory=list, alias="createdAccounts")


class BalanceResponse(_CamelModel):
    wallet: str
    token_account: str = Field(..., alias="tokenAccount")
    has_account: bool = Field(..., alias="hasAccount")
    balance: int = Field(..., description="Minor units of the settlement token")
    balance_ui: str = Field(..., alias="balanceUi")
    sufficient: bool = Field(..., description="Balance covers one analysis")


class AnalysisRequestBody(_CamelModel):
    """POST /api/analysis body. tokenSymbol, exchange, walletAddress are required."""

    token_symbol: str | None = Field(None, alias="tokenSymbol")
    token_name: str | None = Field(None, alias="tokenName")
    token_id: str | None = Field(None, alias="tokenId")
    exchange: str | None = None
    current_price: float | None = Field(None, alias="currentPrice")
    wallet_address: str | None = Field(None, alias="walletAddress")
    payment_signature: str | None = Field(None, alias="paymentSignature")
    referrer_wallet: str | None = Field(None, alias="referrerWallet")


def _payment_error(kind: ErrorKind) -> HTTPException:
    return HTTPException(
        status_code=kind.http_status,
        detail={"error": kind.value, "message": f"Payment verification failed: {kind.message}"},
    )


# -----------------------------------------------------------------------------
# Lifespan
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; drain referral tasks and close the RPC client on shutdown."""
    try:
        init_db()
    except Exception as e:
        logger.warning("paysplit_init_db_skip", error=str(e))
    yield
    await close_services()
    logger.info("paysplit_api_stopped")


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Backend Paysplit API",
    description="USDC split payments on Solana: build, verify, settle, referral commission.",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(referral_router, prefix="/api", tags=["Referral"])


@app.get("/health")
def health() -> dict[str, str]:
    """Liveness probe: API is up."""
    return {"status": "ok"}


@app.get("/api/payment/config")
def payment_config(services: PaymentServices = Depends(get_services)) -> dict[str, Any]:
    """Price, settlement token, recipients, and the split with and without a referrer."""
    s = services.settings
    try:
        s.require_recipients()
        configured = True
    except ConfigurationError:
        configured = False
    return {
        "configured": configured,
        "network": s.solana_network,
        "tokenMint": s.token_mint,
        "tokenDecimals": s.token_decimals,
        "price": str(s.analysis_price),
        "priceMinor": to_minor_units(s.analysis_price, s.token_decimals),
        "recipients": [{"address": r.address, "percentage": r.percentage} for r in s.recipients],
        "referralCommissionPercentage": s.referral_commission_pct,
        "split": split_for_settings(s, has_referrer=False).to_dict() if configured else None,
        "splitWithReferral": split_for_settings(s, has_referrer=True).to_dict() if configured else None,
    }


@app.post("/api/payment/transaction", response_model=BuildTransactionResponse, response_model_by_alias=True)
async def build_payment_transaction(
    body: BuildTransactionRequest,
    services: PaymentServices = Depends(get_services),
) -> BuildTransactionResponse:
    """Unsigned split-payment transaction for the wallet to sign and submit."""
    try:
        built = await services.builder.build(body.wallet_address, body.referrer_wallet)
    except PayerAccountMissingError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except BuildError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except LedgerError as e:
        logger.warning("build_tx_ledger_error", wallet=short(body.wallet_address), error=str(e))
        raise HTTPException(status_code=503, detail=ErrorKind.NETWORK_OR_TIMEOUT.message) from e
    return BuildTransactionResponse(
        transaction=built.to_base64(),
        blockhash=built.blockhash,
        last_valid_block_height=built.last_valid_block_height,
        split=built.split.to_dict(),
        transfers=[{"owner": t.owner, "tokenAccount": t.token_account, "amount": t.amount} for t in built.transfers],
        created_accounts=built.created_accounts,
    )


@app.get("/api/payment/balance/{wallet}", response_model=BalanceResponse, response_model_by_alias=True)
async def payment_balance(wallet: str, services: PaymentServices = Depends(get_services)) -> BalanceResponse:
    """Settlement-token balance of a wallet's associated token account."""
    s = services.settings
    try:
        owner = str(parse_pubkey(wallet, "wallet"))
    except BuildError as e:
        raise HTTPException(status_code=400, detail="Invalid Solana wallet address") from e
    token_account = associated_token_address(owner, s.token_mint)
    try:
        raw = await services.ledger.get_token_account_balance(token_account)
    except LedgerError as e:
        raise HTTPException(status_code=503, detail=ErrorKind.NETWORK_OR_TIMEOUT.message) from e
    balance = raw or 0
    return BalanceResponse(
        wallet=owner,
        token_account=token_account,
        has_account=raw is not None,
        balance=balance,
        balance_ui=str(from_minor_units(balance, s.token_decimals)),
        sufficient=balance >= to_minor_units(s.analysis_price, s.token_decimals),
    )


@app.post("/api/analysis")
async def generate_analysis(
    body: AnalysisRequestBody,
    services: PaymentServices = Depends(get_services),
) -> dict[str, Any]:
    """
    Settle the payment, then generate the analysis once.

    402 verification failed, 409 signature already used, 503 ledger unreachable,
    500 payment configuration invalid or analysis generation failed.
    """
    if not body.token_symbol or not body.exchange or not body.wallet_address:
        raise HTTPException(status_code=400, detail="Missing required fields")

    request = AnalysisRequest(
        token_symbol=body.token_symbol,
        exchange=body.exchange,
        wallet_address=body.wallet_address,
        token_name=body.token_name,
        token_id=body.token_id,
        current_price=body.current_price,
    )
    try:
        outcome, analysis = await services.orchestrator.settle_and_run(
            body.wallet_address,
            body.payment_signature,
            body.referrer_wallet,
            lambda: services.provider.generate(request),
        )
    except PaidActionError as e:
        raise HTTPException(status_code=500, detail="Failed to generate analysis") from e
    if not outcome.ok:
        raise _payment_error(outcome.error or ErrorKind.NOT_FOUND)

    return {
        "success": True,
        "verified": outcome.verified,
        "analysis": analysis,
        "tokenSymbol": body.token_symbol,
        "tokenName": body.token_name,
        "exchange": body.exchange,
        "currentPrice": body.current_price,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@app.exception_handler(ConfigurationError)
def configuration_error_handler(request: Any, exc: ConfigurationError) -> JSONResponse:
    logger.error("payment_config_invalid", error=str(exc))
    kind = ErrorKind.CONFIGURATION_INVALID
    return JSONResponse(status_code=kind.http_status, content={"detail": {"error": kind.value, "message": kind.message}})


@app.exception_handler(HTTPException)
def http_exception_handler(request: Any, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )
