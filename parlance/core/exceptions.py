"""Custom exceptions for Parlance.

All exceptions inherit from ParlanceError, enabling catch-all handling
while still allowing specific exception types.

Exception Hierarchy:
    ParlanceError (base)
    ├── ConfigurationError: Invalid configuration or settings
    ├── HistoryReadError: Message history could not be read (never recovered)
    ├── CheckpointReadError: Summary checkpoint could not be read (fail-open)
    └── StorageError: Backend read/write failure
        └── LockTimeout: Lock not acquired within the timeout

Estimation drift and budget exhaustion have no exception type: neither is
an error. ContextCeilingWarning is a warning class, not an exception.
"""

from typing import Any, Optional


class ParlanceError(Exception):
    """Base exception for all Parlance errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        context: Additional context information about the error
        recoverable: Whether the error is potentially recoverable
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "PARLANCE_ERROR"
        self.context = context or {}
        self.recoverable = recoverable

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_log_dict(self) -> dict[str, Any]:
        """Return structured dict for logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "context": self.context,
        }


class ConfigurationError(ParlanceError):
    """Raised when configuration is invalid or missing.

    Attributes:
        config_key: The configuration key that caused the error
    """

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs: Any) -> None:
        context = kwargs.pop("context", {}) or {}
        if config_key:
            context["config_key"] = config_key
        super().__init__(message, code="CONFIG_ERROR", context=context, **kwargs)
        self.config_key = config_key


class HistoryReadError(ParlanceError):
    """Raised when a conversation's message history cannot be read.

    A turn must never proceed on a partial or empty history in place of the
    real one, so this error always propagates to the caller.

    Attributes:
        conversation_id: The conversation whose history failed to load
    """

    def __init__(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if conversation_id:
            context["conversation_id"] = conversation_id
        super().__init__(
            message,
            code="HISTORY_READ_ERROR",
            context=context,
            recoverable=False,
            **kwargs,
        )
        self.conversation_id = conversation_id


class CheckpointReadError(ParlanceError):
    """Raised by checkpoint stores when the summary checkpoint cannot be read.

    Callers in this package recover by treating the conversation as never
    summarized.

    Attributes:
        conversation_id: The conversation whose checkpoint failed to load
    """

    def __init__(
        self,
        message: str,
        conversation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        if conversation_id:
            context["conversation_id"] = conversation_id
        super().__init__(
            message,
            code="CHECKPOINT_READ_ERROR",
            context=context,
            recoverable=True,
            **kwargs,
        )
        self.conversation_id = conversation_id


class StorageError(ParlanceError):
    """Raised when a storage backend operation fails.

    Attributes:
        operation: The backend operation that failed ('read', 'write', ...)
        key: The storage key involved, if any
    """

    def __init__(
        self,
        message: str,
        operation: str,
        key: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        context = kwargs.pop("context", {}) or {}
        context["operation"] = operation
        if key:
            context["key"] = key
        super().__init__(message, code="STORAGE_ERROR", context=context, **kwargs)
        self.operation = operation
        self.key = key


class LockTimeout(StorageError):
    """Raised when a lock cannot be acquired within the timeout."""

    def __init__(self, key: str, timeout: float) -> None:
        super().__init__(
            f"Failed to acquire lock for '{key}' within {timeout}s",
            operation="lock",
            key=key,
            recoverable=True,
        )
        self.timeout = timeout


class ContextCeilingWarning(UserWarning):
    """Warning describing a prompt that has crossed the warning threshold.

    Attributes:
        total_tokens: Estimated prompt tokens for the turn
        warning_threshold: Token count at which warnings start
        max_context_tokens: The context window
    """

    def __init__(
        self,
        message: str,
        total_tokens: int = 0,
        warning_threshold: int = 0,
        max_context_tokens: int = 0,
    ) -> None:
        self.message = message
        self.total_tokens = total_tokens
        self.warning_threshold = warning_threshold
        self.max_context_tokens = max_context_tokens
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the warning message with context."""
        return (
            f"{self.message} "
            f"(estimated {self.total_tokens}/{self.max_context_tokens} tokens, "
            f"warning at {self.warning_threshold})"
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
