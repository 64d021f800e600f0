"""Configuration module for Parlance.

Usage:
    from parlance.config import get_settings

    settings = get_settings()
    print(settings.summary.interval)
"""

from parlance.config.settings import (
    ParlanceSettings,
    ContextSettings,
    SummarySettings,
    StorageSettings,
    get_settings,
    reload_settings,
    clear_settings_cache,
    DEFAULT_MAX_CONTEXT_TOKENS,
    DEFAULT_SUMMARY_INTERVAL,
    DEFAULT_SUMMARY_TOKEN_CEILING,
    DEFAULT_PLACEHOLDER_MARKER,
)

__all__ = [
    "ParlanceSettings",
    "ContextSettings",
    "SummarySettings",
    "StorageSettings",
    "get_settings",
    "reload_settings",
    "clear_settings_cache",
    "DEFAULT_MAX_CONTEXT_TOKENS",
    "DEFAULT_SUMMARY_INTERVAL",
    "DEFAULT_SUMMARY_TOKEN_CEILING",
    "DEFAULT_PLACEHOLDER_MARKER",
]
