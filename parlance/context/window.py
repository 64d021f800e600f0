"""History window selection.

Chooses which prior messages a turn's prompt may carry. Recency is strictly
prioritized: the window is the longest suffix of the history that fits the
budget, and everything older is omitted from the live prompt. Omitted
messages are still visible to the summary trigger, which always reads the
full history.

Selectors:
    - select_history_window: budget-driven suffix selection
    - select_recent_message_pairs: bounded number of user/assistant exchanges
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from parlance.context.budget import TokenBudget
from parlance.context.schemas import ConversationMessage, Message, MessageRole
from parlance.telemetry.tokens import DEFAULT_ESTIMATOR, TokenEstimator


logger = logging.getLogger(__name__)


DEFAULT_MAX_PAIRS = 5
DEFAULT_PAIRS_MAX_TOKENS = 8_000


@dataclass
class HistoryWindow:
    """Result of history selection.

    Attributes:
        included: Selected messages as sent to the model, oldest first
        included_messages: The underlying stored messages, oldest first
        truncated: True when at least one older message was dropped
        dropped_count: Number of messages preceding the oldest included one
        history_tokens: Content tokens of the included messages (no overhead)
    """

    included: list[ConversationMessage] = field(default_factory=list)
    included_messages: list[Message] = field(default_factory=list)
    truncated: bool = False
    dropped_count: int = 0
    history_tokens: int = 0


def select_history_window(
    message_history: Sequence[Message],
    budget: Union[TokenBudget, int],
    reserved_tokens: int = 0,
    estimator: Optional[TokenEstimator] = None,
) -> HistoryWindow:
    """Select the most recent messages that fit the history budget.

    Walks backwards from the newest message, summing content estimates, and
    stops at the first (older) message that would push the sum past the
    budget. Given any history budget at all, the newest message is always
    included, even when it alone exceeds what remains after reserved_tokens;
    message content is never cut. A history budget of zero includes nothing.

    Args:
        message_history: Messages ordered oldest to newest.
        budget: A TokenBudget (its message_history_budget is used) or a raw
            token count.
        reserved_tokens: Tokens already promised to the system prompt and the
            current turn, taken out of the budget before the walk.
        estimator: Optional estimator override.

    Returns:
        The HistoryWindow.
    """
    estimator = estimator or DEFAULT_ESTIMATOR
    history_budget = budget.message_history_budget if isinstance(budget, TokenBudget) else budget
    available = max(0, history_budget - reserved_tokens)

    if history_budget <= 0:
        # Allocator left nothing for history: system prompt and current turn only.
        return HistoryWindow(
            truncated=len(message_history) > 0,
            dropped_count=len(message_history),
        )

    selected: list[Message] = []
    history_tokens = 0
    dropped_count = 0

    for index in range(len(message_history) - 1, -1, -1):
        message = message_history[index]
        message_tokens = estimator.estimate(message.content)

        if selected and history_tokens + message_tokens > available:
            dropped_count = index + 1
            break

        selected.append(message)
        history_tokens += message_tokens

    selected.reverse()

    if dropped_count:
        logger.debug(
            f"History window kept {len(selected)} of {len(message_history)} messages "
            f"({history_tokens}/{available} tokens), dropped {dropped_count}"
        )

    return HistoryWindow(
        included=[m.to_conversation_message() for m in selected],
        included_messages=selected,
        truncated=dropped_count > 0,
        dropped_count=dropped_count,
        history_tokens=history_tokens,
    )


def select_recent_message_pairs(
    message_history: Sequence[Message],
    max_tokens: int = DEFAULT_PAIRS_MAX_TOKENS,
    max_pairs: int = DEFAULT_MAX_PAIRS,
    estimator: Optional[TokenEstimator] = None,
) -> list[Message]:
    """Select up to max_pairs recent user/assistant exchanges.

    Walks newest first. Each message that fits is kept; each kept assistant
    message also pulls in the nearest earlier user message when that fits
    and is not already kept, and counts as one pair. Selection stops at
    max_pairs or at the first message that does not fit.

    Args:
        message_history: Messages in any order.
        max_tokens: Content token limit for the selection.
        max_pairs: Maximum number of assistant messages (pairs).
        estimator: Optional estimator override.

    Returns:
        Selected messages in chronological order.
    """
    estimator = estimator or DEFAULT_ESTIMATOR
    newest_first = sorted(message_history, key=lambda m: m.sequence_number, reverse=True)

    selected: dict[str, Message] = {}
    current_tokens = 0
    pair_count = 0

    for position, message in enumerate(newest_first):
        if pair_count >= max_pairs:
            break
        if message.id in selected:
            continue

        message_tokens = estimator.estimate(message.content)
        if current_tokens + message_tokens > max_tokens:
            logger.debug(
                f"Pair selection stopped at {pair_count} pairs, "
                f"{current_tokens + message_tokens} tokens exceeds {max_tokens}"
            )
            break

        selected[message.id] = message
        current_tokens += message_tokens

        if message.role != MessageRole.ASSISTANT:
            continue

        prompt = next(
            (
                earlier
                for earlier in newest_first[position + 1:]
                if earlier.role == MessageRole.USER
                and earlier.sequence_number < message.sequence_number
            ),
            None,
        )
        if prompt is not None and prompt.id not in selected:
            prompt_tokens = estimator.estimate(prompt.content)
            if current_tokens + prompt_tokens <= max_tokens:
                selected[prompt.id] = prompt
                current_tokens += prompt_tokens

        pair_count += 1

    return sorted(selected.values(), key=lambda m: m.sequence_number)


__all__ = [
    "DEFAULT_MAX_PAIRS",
    "DEFAULT_PAIRS_MAX_TOKENS",
    "HistoryWindow",
    "select_history_window",
    "select_recent_message_pairs",
]
