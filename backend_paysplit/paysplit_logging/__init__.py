"""
Structured logging for Backend Paysplit.

JSON logs with timestamp, event_type, and payment fields (wallet, signature, error kind).
Use get_logger() in all modules for aggregation-friendly output.
"""

from backend_paysplit.paysplit_logging.logger import bind_payment, get_logger, short

__all__ = ["bind_payment", "get_logger", "short"]
