"""Token budget allocation for a single chat turn.

Partitions a fixed context window into the system prompt, auxiliary context
(world info, memories, current-turn context, auto-summary), a safety margin
reserved for the model's response, and whatever remains for message history.

Invariant:
    system_prompt_tokens + context_tokens + message_history_budget + safety_margin
        <= total_budget
    whenever the fixed costs fit; otherwise message_history_budget is 0.

Example:
    >>> budget = allocate_token_budget(4000, system_prompt, world_info="...")
    >>> budget.message_history_budget
    3000
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from typing import Any, Optional

from parlance.telemetry.tokens import DEFAULT_ESTIMATOR, TokenEstimator


# =============================================================================
# Constants
# =============================================================================

SAFETY_MARGIN_RATIO = 0.10
MIN_SAFETY_MARGIN = 500
WARNING_THRESHOLD_RATIO = 0.90


# =============================================================================
# Token Budget
# =============================================================================


@dataclass(frozen=True)
class TokenBudget:
    """Immutable per-turn allocation of a context window.

    Computed fresh for every turn and never persisted.

    Attributes:
        total_budget: The model's context window
        system_prompt_tokens: Estimated cost of the system prompt
        context_tokens: Estimated cost of the injected auxiliary context
        message_history_budget: Tokens available for prior messages
        warning_threshold: Token count at which callers may warn users
        safety_margin: Tokens reserved for the response and estimation slop
    """

    total_budget: int
    system_prompt_tokens: int
    context_tokens: int
    message_history_budget: int
    warning_threshold: int
    safety_margin: int

    @property
    def fixed_tokens(self) -> int:
        """Tokens committed before any history is added."""
        return self.system_prompt_tokens + self.context_tokens + self.safety_margin

    @property
    def is_exhausted(self) -> bool:
        """True when fixed costs leave no room for history."""
        return self.message_history_budget == 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def allocate_token_budget(
    max_context_tokens: int,
    system_prompt: str,
    world_info: str = "",
    memories: str = "",
    current_context: str = "",
    auto_summary: str = "",
    estimator: Optional[TokenEstimator] = None,
    safety_margin_ratio: float = SAFETY_MARGIN_RATIO,
    min_safety_margin: int = MIN_SAFETY_MARGIN,
    warning_ratio: float = WARNING_THRESHOLD_RATIO,
) -> TokenBudget:
    """Compute the token budget for a turn.

    The auxiliary pieces are concatenated and estimated in a single pass,
    matching the cost of injecting them together into one prompt.

    Fixed costs that exceed the window are not an error: the history budget
    degrades to 0.

    Args:
        max_context_tokens: The model's context window.
        system_prompt: The system prompt text.
        world_info: World-info / lorebook text.
        memories: Retrieved memory text.
        current_context: Context extracted for the current turn.
        auto_summary: The latest conversation summary.
        estimator: Optional estimator override.
        safety_margin_ratio: Fraction of the window reserved for the response.
        min_safety_margin: Floor on the reserved tokens.
        warning_ratio: Fraction of the window used as the warning threshold.

    Returns:
        The TokenBudget.
    """
    estimator = estimator or DEFAULT_ESTIMATOR

    system_prompt_tokens = estimator.estimate(system_prompt or "")
    context_tokens = estimator.estimate(
        (world_info or "") + (memories or "") + (current_context or "") + (auto_summary or "")
    )

    safety_margin = max(math.ceil(max_context_tokens * safety_margin_ratio), min_safety_margin)

    message_history_budget = max(
        0,
        max_context_tokens - system_prompt_tokens - context_tokens - safety_margin,
    )

    return TokenBudget(
        total_budget=max_context_tokens,
        system_prompt_tokens=system_prompt_tokens,
        context_tokens=context_tokens,
        message_history_budget=message_history_budget,
        warning_threshold=math.floor(max_context_tokens * warning_ratio),
        safety_margin=safety_margin,
    )


__all__ = [
    "SAFETY_MARGIN_RATIO",
    "MIN_SAFETY_MARGIN",
    "WARNING_THRESHOLD_RATIO",
    "TokenBudget",
    "allocate_token_budget",
]
