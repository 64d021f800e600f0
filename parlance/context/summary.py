"""Auto-summarization triggers.

Two independent triggers decide whether a conversation's logical history
must be compressed:

    1. Interval trigger: every SUMMARY_INTERVAL assistant turns since the
       last summary checkpoint. Streaming placeholders never count.
    2. Size trigger: the untruncated history plus system prompt plus the new
       user message reaches SUMMARY_TOKEN_CEILING.

Both read the FULL history, never the truncated prompt window. Callers
treat them as OR-conditions.

This module is pure: the checkpoint is passed in, and nothing here reads or
writes the summary store. Writing a new checkpoint is the job of the worker
that produces the summary.

Example:
    >>> info = evaluate_summary_trigger(history, SummaryCheckpoint.empty())
    >>> if info.should_trigger_summary:
    ...     transcript = build_summary_transcript(info.messages_to_summarize)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from parlance.config.settings import (
    DEFAULT_PLACEHOLDER_MARKER,
    DEFAULT_SUMMARY_INTERVAL,
    DEFAULT_SUMMARY_TOKEN_CEILING,
)
from parlance.context.schemas import Message
from parlance.telemetry.tokens import DEFAULT_ESTIMATOR, TokenEstimator


logger = logging.getLogger(__name__)


SUMMARY_INTERVAL = DEFAULT_SUMMARY_INTERVAL
SUMMARY_TOKEN_CEILING = DEFAULT_SUMMARY_TOKEN_CEILING


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class SummaryCheckpoint:
    """The durable record of how far a conversation has been summarized.

    Attributes:
        last_summary_end_message: Sequence number of the last summarized message
        has_summaries: Whether any summary exists
    """

    last_summary_end_message: int = 0
    has_summaries: bool = False

    @classmethod
    def empty(cls) -> "SummaryCheckpoint":
        """Checkpoint for a conversation that was never summarized."""
        return cls(last_summary_end_message=0, has_summaries=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_summary_end_message": self.last_summary_end_message,
            "has_summaries": self.has_summaries,
        }


@dataclass(frozen=True)
class SummaryTriggerInfo:
    """Decision record of the interval trigger.

    Attributes:
        should_trigger_summary: Whether a summarization pass must run
        current_ai_count: Counted assistant turns since the checkpoint
        next_summary_at: last_summary_end_message + interval (progress display)
        last_summary_end_message: The checkpoint the decision was made against
        messages_to_summarize: Every message in the range to summarize
        lock_prevented: True when a running summarization suppressed the trigger
    """

    should_trigger_summary: bool
    current_ai_count: int
    next_summary_at: int
    last_summary_end_message: int
    messages_to_summarize: list[Message] = field(default_factory=list)
    lock_prevented: bool = False

    @property
    def summary_end_message(self) -> Optional[int]:
        """Sequence number the next checkpoint should record, if triggered."""
        if not self.messages_to_summarize:
            return None
        return self.messages_to_summarize[-1].sequence_number

    def to_dict(self) -> dict[str, Any]:
        return {
            "should_trigger_summary": self.should_trigger_summary,
            "current_ai_count": self.current_ai_count,
            "next_summary_at": self.next_summary_at,
            "last_summary_end_message": self.last_summary_end_message,
            "messages_to_summarize": [
                m.model_dump(mode="json") for m in self.messages_to_summarize
            ],
            "lock_prevented": self.lock_prevented,
        }


# =============================================================================
# Interval Trigger
# =============================================================================


def _counts_toward_interval(message: Message, placeholder_marker: str) -> bool:
    return message.is_assistant and not message.is_pending(placeholder_marker)


def count_ai_messages(
    message_history: Sequence[Message],
    placeholder_marker: str = DEFAULT_PLACEHOLDER_MARKER,
) -> int:
    """Count completed assistant messages in a history."""
    return sum(1 for m in message_history if _counts_toward_interval(m, placeholder_marker))


def evaluate_summary_trigger(
    message_history: Sequence[Message],
    checkpoint: SummaryCheckpoint,
    interval: int = SUMMARY_INTERVAL,
    placeholder_marker: str = DEFAULT_PLACEHOLDER_MARKER,
    conversation_id: Optional[str] = None,
) -> SummaryTriggerInfo:
    """Decide whether the conversation needs a new summary.

    Counts completed assistant messages after the checkpoint. At or past the
    interval, the batch is exactly the first ``interval`` of them, and the
    range to summarize is every message (user and assistant) after the
    checkpoint up to and including the last assistant message in the batch.

    Args:
        message_history: The full, untruncated history.
        checkpoint: The latest summary checkpoint.
        interval: Assistant turns per summary.
        placeholder_marker: Content marker of streaming placeholders.
        conversation_id: Used for logging only.

    Returns:
        The SummaryTriggerInfo. Calling again with the same inputs yields an
        equal result.
    """
    last_end = checkpoint.last_summary_end_message

    pending_ai = [
        m
        for m in message_history
        if m.sequence_number > last_end and _counts_toward_interval(m, placeholder_marker)
    ]
    pending_ai.sort(key=lambda m: m.sequence_number)

    current_ai_count = len(pending_ai)
    next_summary_at = last_end + interval
    should_trigger = current_ai_count >= interval

    messages_to_summarize: list[Message] = []
    if should_trigger:
        batch_end = pending_ai[interval - 1].sequence_number
        messages_to_summarize = sorted(
            (m for m in message_history if last_end < m.sequence_number <= batch_end),
            key=lambda m: m.sequence_number,
        )

    logger.info(
        f"Summary trigger check for {conversation_id or '<unknown>'}: "
        f"last_summary_end={last_end} ai_count={current_ai_count}/{interval} "
        f"next_summary_at={next_summary_at} "
        f"decision={'trigger' if should_trigger else 'none'} "
        f"range_size={len(messages_to_summarize)}"
    )

    return SummaryTriggerInfo(
        should_trigger_summary=should_trigger,
        current_ai_count=current_ai_count,
        next_summary_at=next_summary_at,
        last_summary_end_message=last_end,
        messages_to_summarize=messages_to_summarize,
    )


def suppress_trigger(info: SummaryTriggerInfo) -> SummaryTriggerInfo:
    """Return info with the trigger cancelled because a summary is running."""
    return SummaryTriggerInfo(
        should_trigger_summary=False,
        current_ai_count=info.current_ai_count,
        next_summary_at=info.next_summary_at,
        last_summary_end_message=info.last_summary_end_message,
        messages_to_summarize=[],
        lock_prevented=True,
    )


# =============================================================================
# Size Trigger
# =============================================================================


def history_tokens(
    message_history: Sequence[Message],
    estimator: Optional[TokenEstimator] = None,
) -> int:
    """Content tokens of an entire history, without per-message overhead."""
    estimator = estimator or DEFAULT_ESTIMATOR
    return sum(estimator.estimate(m.content) for m in message_history)


def needs_size_summarization(
    original_total_tokens: int,
    ceiling: int = SUMMARY_TOKEN_CEILING,
) -> bool:
    """Backstop trigger for conversations with unusually long messages.

    Args:
        original_total_tokens: System prompt + ALL history + new user message.
        ceiling: Token total at which summarization is forced.
    """
    return original_total_tokens >= ceiling


# =============================================================================
# Transcript
# =============================================================================


def build_summary_transcript(
    messages: Sequence[Message],
    assistant_name: str = "Character",
    user_name: str = "User",
) -> str:
    """Render a summarization range as speaker-labelled text.

    Args:
        messages: The messages to summarize, in any order.
        assistant_name: Label for assistant turns.
        user_name: Label for user turns.

    Returns:
        ``Speaker: content`` blocks separated by blank lines, in sequence order.
    """
    ordered = sorted(messages, key=lambda m: m.sequence_number)
    return "\n\n".join(
        f"{assistant_name if m.is_assistant else user_name}: {m.content}"
        for m in ordered
    )


__all__ = [
    "SUMMARY_INTERVAL",
    "SUMMARY_TOKEN_CEILING",
    "SummaryCheckpoint",
    "SummaryTriggerInfo",
    "count_ai_messages",
    "evaluate_summary_trigger",
    "suppress_trigger",
    "history_tokens",
    "needs_size_summarization",
    "build_summary_transcript",
]
