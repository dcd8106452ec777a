"""
Configuration management for Backend Paysplit.

Loads and validates settings from environment variables and .env. Exposes a
single source of truth for fee, recipients, settlement token, and limits.
"""

from backend_paysplit.config.settings import (  # noqa: F401
    PaymentSettings,
    RecipientShare,
    get_settings,
    reset_settings_for_test,
)

__all__ = ["PaymentSettings", "RecipientShare", "get_settings", "reset_settings_for_test"]
