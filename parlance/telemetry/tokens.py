"""Token estimation and usage reporting for Parlance.

This module implements a calibrated, tokenizer-free token estimator and the
usage report logged once per assembled turn.

Key Components:
    - estimate_tokens: text -> estimated token count
    - apply_content_type_scaling: the structured/code content heuristic
    - TokenEstimator: protocol every budget component accepts, so a real
      tokenizer can replace the heuristic without touching callers
    - calculate_message_tokens: conversation cost including role framing
    - TokenUsageReport / log_token_usage: per-turn usage telemetry

Estimation Model:
    base = max(ceil(chars / 4), ceil(words * 1.3))
    x1.2  if the text contains '{' or '['           (structured payloads)
    x1.15 if the text contains '```' or '<'         (code or markup)
    Each multiplication rounds up. The estimate is biased high: under-filling
    a context window is cheaper than overflowing it.

Example:
    >>> estimate_tokens("hello world")
    3
    >>> estimate_tokens('{"a": 1}')
    4
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Protocol, Union, runtime_checkable


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CHARS_PER_TOKEN = 4
WORD_TOKEN_MULTIPLIER = 1.3

STRUCTURED_CONTENT_MULTIPLIER = 1.2
CODE_CONTENT_MULTIPLIER = 1.15

STRUCTURED_MARKERS = ("{", "[")
CODE_MARKERS = ("```", "<")

# Role-label framing per message in a full conversation
MESSAGE_OVERHEAD_TOKENS = 3

# Usage status boundaries (percent of the context window)
MEDIUM_USAGE_PERCENT = 70
HIGH_USAGE_PERCENT = 90


# =============================================================================
# Estimator
# =============================================================================


def apply_content_type_scaling(text: str, tokens: int) -> int:
    """Scale a base estimate for content that tokenizes densely.

    Structured content (JSON-ish brackets) is scaled first, then code or
    markup. Both checks are independent, so text carrying both markers is
    scaled twice.

    Args:
        text: The text the estimate belongs to.
        tokens: The base estimate.

    Returns:
        The scaled estimate.
    """
    if any(marker in text for marker in STRUCTURED_MARKERS):
        tokens = math.ceil(tokens * STRUCTURED_CONTENT_MULTIPLIER)

    if any(marker in text for marker in CODE_MARKERS):
        tokens = math.ceil(tokens * CODE_CONTENT_MULTIPLIER)

    return tokens


def estimate_tokens(text: Optional[str]) -> int:
    """Estimate the token count of text.

    Args:
        text: The text to estimate. None is treated as empty.

    Returns:
        A non-negative estimated token count. Empty or whitespace-only
        text estimates to 0.
    """
    if not text or not text.strip():
        return 0

    char_tokens = math.ceil(len(text) / CHARS_PER_TOKEN)
    word_tokens = math.ceil(len(text.split()) * WORD_TOKEN_MULTIPLIER)

    return apply_content_type_scaling(text, max(char_tokens, word_tokens))


@runtime_checkable
class TokenEstimator(Protocol):
    """Protocol for anything that can price text in tokens."""

    def estimate(self, text: str) -> int:
        """Return the estimated token count of text."""
        ...


class HeuristicTokenEstimator:
    """TokenEstimator backed by estimate_tokens."""

    def estimate(self, text: str) -> int:
        return estimate_tokens(text)

    def __repr__(self) -> str:
        return "HeuristicTokenEstimator()"


DEFAULT_ESTIMATOR = HeuristicTokenEstimator()


def _content_of(message: Any) -> str:
    if isinstance(message, Mapping):
        return message.get("content") or ""
    return getattr(message, "content", "") or ""


def calculate_message_tokens(
    messages: Iterable[Any],
    estimator: Optional[TokenEstimator] = None,
    overhead_tokens: int = MESSAGE_OVERHEAD_TOKENS,
) -> int:
    """Estimate the cost of a full conversation.

    Args:
        messages: Objects with a ``content`` attribute, or dicts with a
            ``content`` key.
        estimator: Optional estimator override.
        overhead_tokens: Role framing tokens added per message.

    Returns:
        Sum of content estimates plus per-message overhead.
    """
    estimator = estimator or DEFAULT_ESTIMATOR
    return sum(
        estimator.estimate(_content_of(message)) + overhead_tokens
        for message in messages
    )


# =============================================================================
# Usage Reporting
# =============================================================================


class UsageStatus(str, Enum):
    """Coarse context-window usage level."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_percent(cls, percent_used: int) -> "UsageStatus":
        if percent_used > HIGH_USAGE_PERCENT:
            return cls.HIGH
        if percent_used > MEDIUM_USAGE_PERCENT:
            return cls.MEDIUM
        return cls.LOW


@dataclass(frozen=True)
class TokenUsageReport:
    """Usage of one assembled turn against its context window.

    Attributes:
        conversation_id: Conversation the turn belongs to
        model: Model identifier, if known
        total_tokens: Estimated prompt tokens
        max_tokens: Context window
        percent_used: Rounded percentage of the window used
        remaining: Tokens left in the window (negative on overflow)
        status: Coarse usage level
        breakdown: Per-component token counts
    """

    conversation_id: str
    model: Optional[str]
    total_tokens: int
    max_tokens: int
    percent_used: int
    remaining: int
    status: UsageStatus
    breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data


def build_usage_report(
    conversation_id: str,
    total_tokens: int,
    max_tokens: int,
    breakdown: Optional[Union[Mapping[str, int], Any]] = None,
    model: Optional[str] = None,
) -> TokenUsageReport:
    """Build a TokenUsageReport.

    Args:
        conversation_id: Conversation identifier.
        total_tokens: Estimated prompt tokens for the turn.
        max_tokens: Context window.
        breakdown: Mapping of component -> tokens, or an object with to_dict().
        model: Optional model identifier.

    Returns:
        The report.
    """
    if breakdown is not None and hasattr(breakdown, "to_dict"):
        breakdown = breakdown.to_dict()
    percent_used = round(total_tokens / max_tokens * 100) if max_tokens > 0 else 100

    return TokenUsageReport(
        conversation_id=conversation_id,
        model=model,
        total_tokens=total_tokens,
        max_tokens=max_tokens,
        percent_used=percent_used,
        remaining=max_tokens - total_tokens,
        status=UsageStatus.from_percent(percent_used),
        breakdown=dict(breakdown or {}),
    )


def log_token_usage(
    conversation_id: str,
    total_tokens: int,
    max_tokens: int,
    breakdown: Optional[Union[Mapping[str, int], Any]] = None,
    model: Optional[str] = None,
) -> TokenUsageReport:
    """Build a usage report and log it.

    HIGH usage is logged at WARNING, everything else at INFO.

    Returns:
        The logged report.
    """
    report = build_usage_report(
        conversation_id,
        total_tokens,
        max_tokens,
        breakdown=breakdown,
        model=model,
    )
    level = logging.WARNING if report.status is UsageStatus.HIGH else logging.INFO
    logger.log(
        level,
        f"Token usage for {conversation_id}: {report.total_tokens}/{report.max_tokens} "
        f"({report.percent_used}%, {report.status.value}) breakdown={report.breakdown}",
    )
    return report


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
