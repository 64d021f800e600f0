"""Core infrastructure for Parlance: exceptions and storage backends."""

from parlance.core.exceptions import (
    ParlanceError,
    ConfigurationError,
    HistoryReadError,
    CheckpointReadError,
    StorageError,
    LockTimeout,
    ContextCeilingWarning,
)

__all__ = [
    "ParlanceError",
    "ConfigurationError",
    "HistoryReadError",
    "CheckpointReadError",
    "StorageError",
    "LockTimeout",
    "ContextCeilingWarning",
]
