"""
Main entrypoint: Paysplit API server (payment config, transaction building, paid analysis, referrals).

Validates payment settings before binding the port so a misconfigured deployment
fails at startup instead of on the first paid request.

Env: SOLANA_RPC_URL, SETTLEMENT_TOKEN_MINT, PAYMENT_WALLET_1/2 or PAYMENT_RECIPIENTS,
PAYSPLIT_DB_PATH, API_HOST, API_PORT, etc.

API only: uvicorn backend_paysplit.api_server.app:app --host 0.0.0.0 --port 8000
"""

import os
import sys

# Configure structured JSON logging before other imports that may log
from backend_paysplit.paysplit_logging import get_logger

logger = get_logger("main")


def main() -> None:
    """Check payment configuration, then run the FastAPI server in the main thread."""
    api_host = os.getenv("API_HOST", "0.0.0.0").strip()
    api_port = int(os.getenv("API_PORT", "8000").strip() or "8000")

    from backend_paysplit.config.env import mask_rpc_url
    from backend_paysplit.config.settings import get_settings
    from backend_paysplit.core.exceptions import ConfigurationError

    try:
        settings = get_settings()
        recipients = settings.require_recipients()
    except ConfigurationError as e:
        logger.error("main_config_error", message=str(e))
        sys.exit(1)

    logger.info(
        "main_payment_config",
        app_env=settings.app_env,
        network=settings.solana_network,
        rpc=mask_rpc_url(settings.solana_rpc_url),
        recipient_count=len(recipients),
        allow_unverified=settings.allow_unverified,
    )

    from backend_paysplit.api_server.app import app
    import uvicorn

    logger.info("main_server_starting", host=api_host, port=api_port)
    uvicorn.run(app, host=api_host, port=api_port, log_level=os.getenv("LOG_LEVEL", "info").lower())


if __name__ == "__main__":
    main()
