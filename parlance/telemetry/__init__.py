"""Telemetry module for Parlance.

Token estimation and per-turn usage reporting.

Example:
    >>> from parlance.telemetry import estimate_tokens
    >>> estimate_tokens("hello world")
    3
"""

from parlance.telemetry.tokens import (
    CHARS_PER_TOKEN,
    MESSAGE_OVERHEAD_TOKENS,
    apply_content_type_scaling,
    estimate_tokens,
    TokenEstimator,
    HeuristicTokenEstimator,
    DEFAULT_ESTIMATOR,
    calculate_message_tokens,
    UsageStatus,
    TokenUsageReport,
    build_usage_report,
    log_token_usage,
)

__all__ = [
    "CHARS_PER_TOKEN",
    "MESSAGE_OVERHEAD_TOKENS",
    "apply_content_type_scaling",
    "estimate_tokens",
    "TokenEstimator",
    "HeuristicTokenEstimator",
    "DEFAULT_ESTIMATOR",
    "calculate_message_tokens",
    "UsageStatus",
    "TokenUsageReport",
    "build_usage_report",
    "log_token_usage",
]
