"""Conversation context management for Parlance.

This module decides, for each chat turn, which prior messages fit in the
prompt and whether the conversation is due for summarization.

Key Components:
    - allocate_token_budget: Splits the context window into fixed costs,
      safety margin and history budget
    - select_history_window: Keeps the longest recent suffix that fits
    - evaluate_summary_trigger: Interval trigger over assistant turns
    - build_conversation: Pure per-turn assembler
    - ConversationContextManager: Async assembler over the storage layer

Example:
    >>> from parlance.context import build_conversation
    >>>
    >>> result = build_conversation(
    ...     system_prompt="You are Ava.",
    ...     message_history=history,
    ...     new_user_message="Hi again",
    ...     max_context_tokens=8000,
    ... )
    >>> result.to_messages()
"""

from parlance.context.schemas import (
    MessageRole,
    Message,
    ConversationMessage,
)

from parlance.context.budget import (
    SAFETY_MARGIN_RATIO,
    MIN_SAFETY_MARGIN,
    WARNING_THRESHOLD_RATIO,
    TokenBudget,
    allocate_token_budget,
)

from parlance.context.window import (
    HistoryWindow,
    select_history_window,
    select_recent_message_pairs,
)

from parlance.context.summary import (
    SUMMARY_INTERVAL,
    SUMMARY_TOKEN_CEILING,
    SummaryCheckpoint,
    SummaryTriggerInfo,
    count_ai_messages,
    evaluate_summary_trigger,
    suppress_trigger,
    history_tokens,
    needs_size_summarization,
    build_summary_transcript,
)

from parlance.context.manager import (
    AuxiliaryContext,
    TokenBreakdown,
    ConversationResult,
    build_conversation,
    ConversationContextManager,
)

__all__ = [
    # Schemas
    "MessageRole",
    "Message",
    "ConversationMessage",
    # Budget
    "SAFETY_MARGIN_RATIO",
    "MIN_SAFETY_MARGIN",
    "WARNING_THRESHOLD_RATIO",
    "TokenBudget",
    "allocate_token_budget",
    # Window
    "HistoryWindow",
    "select_history_window",
    "select_recent_message_pairs",
    # Summary
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
    # Assembly
    "AuxiliaryContext",
    "TokenBreakdown",
    "ConversationResult",
    "build_conversation",
    "ConversationContextManager",
]
