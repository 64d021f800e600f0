"""Pydantic settings for Parlance.

This module defines the ParlanceSettings class that loads configuration from
environment variables and .env files. It uses pydantic-settings for automatic
environment variable parsing and validation.

Settings Categories:
    - Core: Framework-level settings (debug mode, log level, environment)
    - Context: Context window sizing (window size, safety margin, overhead)
    - Summary: Auto-summarization cadence (interval, token ceiling, locks)
    - Storage: History/checkpoint backends (type, data directory, timeouts)

Environment Variables:
    PARLANCE_DEBUG: Enable debug mode (default: false)
    PARLANCE_LOG_LEVEL: Logging level (default: INFO)
    PARLANCE_CONTEXT__MAX_CONTEXT_TOKENS: Default context window (default: 12000)
    PARLANCE_SUMMARY__INTERVAL: Assistant turns per summary (default: 15)
    PARLANCE_SUMMARY__TOKEN_CEILING: Overall-size trigger (default: 12000)
    PARLANCE_STORAGE__BACKEND: 'memory' or 'filesystem' (default: memory)

Usage:
    from parlance.config.settings import get_settings

    settings = get_settings()
    print(settings.context.max_context_tokens)
    print(settings.summary.interval)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# Default Constants
# =============================================================================

DEFAULT_MAX_CONTEXT_TOKENS = 12_000
"""Default context window when the caller does not supply one."""

DEFAULT_SUMMARY_INTERVAL = 15
"""Assistant turns between automatic summaries."""

DEFAULT_SUMMARY_TOKEN_CEILING = 12_000
"""Untruncated conversation size that forces summarization."""

DEFAULT_PLACEHOLDER_MARKER = "[PLACEHOLDER]"
"""Content marker used for assistant messages that are still streaming."""


# =============================================================================
# Nested Settings Models
# =============================================================================


class ContextSettings(BaseModel):
    """Settings for context window allocation.

    Attributes:
        max_context_tokens: Context window used when a turn does not specify one.
        safety_margin_ratio: Fraction of the window reserved for the response.
        min_safety_margin: Lower bound on the reserved response tokens.
        warning_ratio: Fraction of the window at which callers should warn.
        message_overhead_tokens: Role-framing tokens added per message.
    """

    max_context_tokens: int = Field(
        default=DEFAULT_MAX_CONTEXT_TOKENS,
        ge=1,
        description="Default context window in tokens"
    )
    safety_margin_ratio: float = Field(
        default=0.10,
        ge=0.0,
        le=1.0,
        description="Fraction of the window reserved for the response"
    )
    min_safety_margin: int = Field(
        default=500,
        ge=0,
        description="Minimum reserved response tokens"
    )
    warning_ratio: float = Field(
        default=0.90,
        gt=0.0,
        le=1.0,
        description="Context-ceiling warning ratio"
    )
    message_overhead_tokens: int = Field(
        default=3,
        ge=0,
        description="Per-message role framing overhead"
    )


class SummarySettings(BaseModel):
    """Settings for automatic conversation summarization.

    Attributes:
        interval: Number of assistant turns covered by one summary.
        token_ceiling: Untruncated conversation size that forces summarization.
        placeholder_marker: Content marker for streaming placeholder messages.
        lock_timeout: Seconds to wait for the per-conversation summary lock.
    """

    interval: int = Field(
        default=DEFAULT_SUMMARY_INTERVAL,
        ge=1,
        description="Assistant turns per summary"
    )
    token_ceiling: int = Field(
        default=DEFAULT_SUMMARY_TOKEN_CEILING,
        ge=1,
        description="Overall-size summarization trigger"
    )
    placeholder_marker: str = Field(
        default=DEFAULT_PLACEHOLDER_MARKER,
        min_length=1,
        description="Marker identifying streaming placeholders"
    )
    lock_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Summary lock acquisition timeout in seconds"
    )


class StorageSettings(BaseModel):
    """Settings for message history and checkpoint storage.

    Attributes:
        backend: Storage backend type ('memory', 'filesystem').
        data_dir: Root directory for the filesystem backend.
        read_timeout: Seconds allowed for a history or checkpoint read.

    Storage Backend Types:
        - 'memory': In-memory storage for testing. Data is lost on restart.
        - 'filesystem': JSON-Lines history and JSON checkpoints under data_dir,
            with portalocker lock files under data_dir/locks.
    """

    backend: str = Field(
        default="memory",
        description="Storage backend type: 'memory' or 'filesystem'"
    )
    data_dir: Path = Field(
        default=Path("data/parlance"),
        description="Root directory for filesystem storage"
    )
    read_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Read timeout in seconds"
    )

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        """Validate storage backend type."""
        valid_backends = {"filesystem", "memory"}
        normalized = v.lower().strip()
        if normalized not in valid_backends:
            raise ValueError(
                f"Invalid storage backend '{v}'. Must be one of: {', '.join(sorted(valid_backends))}"
            )
        return normalized

    @field_validator("data_dir", mode="before")
    @classmethod
    def convert_to_path(cls, v: Any) -> Path:
        """Convert string paths to Path objects."""
        if isinstance(v, str):
            return Path(v)
        return v


# =============================================================================
# Main Settings Class
# =============================================================================


class ParlanceSettings(BaseSettings):
    """Main settings class for Parlance configuration.

    Environment variables use the PARLANCE_ prefix; nested groups use a
    double underscore (PARLANCE_SUMMARY__INTERVAL=10).

    Attributes:
        debug: Enable debug mode for verbose logging.
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        environment: Deployment environment (development, staging, production, test).
        context: Context window configuration.
        summary: Auto-summarization configuration.
        storage: Storage backend configuration.
    """

    model_config = SettingsConfigDict(
        env_prefix="PARLANCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
        case_sensitive=False,
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )
    environment: str = Field(
        default="development",
        description="Deployment environment"
    )

    context: ContextSettings = Field(
        default_factory=ContextSettings,
        description="Context window configuration"
    )
    summary: SummarySettings = Field(
        default_factory=SummarySettings,
        description="Summarization configuration"
    )
    storage: StorageSettings = Field(
        default_factory=StorageSettings,
        description="Storage configuration"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        normalized = v.upper()
        if normalized not in valid_levels:
            raise ValueError(
                f"Invalid log level '{v}'. Must be one of: {', '.join(sorted(valid_levels))}"
            )
        return normalized

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate and normalize environment."""
        valid_envs = {"development", "staging", "production", "test"}
        normalized = v.lower()
        if normalized not in valid_envs:
            raise ValueError(
                f"Invalid environment '{v}'. Must be one of: {', '.join(sorted(valid_envs))}"
            )
        return normalized

    @model_validator(mode="after")
    def check_margin_fits_window(self) -> "ParlanceSettings":
        """Reject a safety margin floor that swallows the whole window."""
        if self.context.min_safety_margin > self.context.max_context_tokens:
            raise ValueError(
                "context.min_safety_margin cannot exceed context.max_context_tokens"
            )
        return self

    def ensure_directories(self) -> None:
        """Create the filesystem storage directories if they don't exist."""
        if self.storage.backend == "filesystem":
            self.storage.data_dir.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> dict[str, Any]:
        """Export settings as a dictionary."""
        return self.model_dump(mode="json")


# =============================================================================
# Singleton Pattern
# =============================================================================

_settings_instance: Optional[ParlanceSettings] = None


def get_settings() -> ParlanceSettings:
    """Get the cached settings instance.

    The settings are created once and cached for subsequent calls to avoid
    repeated .env parsing.

    Returns:
        The cached ParlanceSettings instance.
    """
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = ParlanceSettings()
    return _settings_instance


def reload_settings() -> ParlanceSettings:
    """Reload settings from environment, clearing the cache.

    Returns:
        A fresh ParlanceSettings instance.
    """
    global _settings_instance
    _settings_instance = ParlanceSettings()
    return _settings_instance


def clear_settings_cache() -> None:
    """Clear the settings cache without creating a new instance."""
    global _settings_instance
    _settings_instance = None


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
