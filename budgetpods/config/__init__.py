"""Configuration package."""

from budgetpods.config.settings import (
    AISettings,
    AppSettings,
    AuthSettings,
    OpenAISettings,
    Settings,
    get_settings,
    validate_all_settings,
)

__all__ = [
    "AISettings",
    "AppSettings",
    "AuthSettings",
    "OpenAISettings",
    "Settings",
    "get_settings",
    "validate_all_settings",
]
