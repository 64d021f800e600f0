"""Parlance - conversation context and token-budget management.

Decides, for every chat turn, which messages fit into a model's context
window and when a conversation should be summarized:
- Heuristic token estimation
- Token budget allocation with a safety margin
- Recency-first history windows
- Interval and size summarization triggers
"""

__version__ = "1.0.0"

from parlance.telemetry.tokens import estimate_tokens
from parlance.context import (
    AuxiliaryContext,
    ConversationContextManager,
    ConversationResult,
    Message,
    MessageRole,
    SummaryCheckpoint,
    SummaryTriggerInfo,
    TokenBudget,
    allocate_token_budget,
    build_conversation,
    evaluate_summary_trigger,
    select_history_window,
)

__all__ = [
    "__version__",
    "estimate_tokens",
    "AuxiliaryContext",
    "ConversationContextManager",
    "ConversationResult",
    "Message",
    "MessageRole",
    "SummaryCheckpoint",
    "SummaryTriggerInfo",
    "TokenBudget",
    "allocate_token_budget",
    "build_conversation",
    "evaluate_summary_trigger",
    "select_history_window",
]
