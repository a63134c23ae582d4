"""Configuration package."""

from family_budget.config.settings import (
    AppSettings,
    DatabaseSettings,
    EmailSettings,
    GeminiSettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AppSettings",
    "DatabaseSettings",
    "EmailSettings",
    "GeminiSettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
