"""Conversation assembly for a single chat turn.

This module composes the prompt for one turn: the system message (system
prompt plus injected auxiliary context), the most recent history that fits
the budget, and the new user message. It also decides whether the
conversation is due for summarization.

Key Components:
    - AuxiliaryContext: world info, memories, current context, auto-summary
    - build_conversation: pure assembler over an in-memory history
    - ConversationResult: the assembled prompt plus usage statistics
    - ConversationContextManager: async service reading history and
      checkpoints through the storage protocols

Summarization decision:
    needs_summarization = size trigger (untruncated total >= ceiling)
                          OR interval trigger (assistant turns since checkpoint)
    The pure assembler computes only the size trigger; the manager ORs in the
    interval trigger it evaluates against the same full history.

Example:
    >>> manager = ConversationContextManager(history_reader, checkpoint_store)
    >>> result = await manager.assemble(
    ...     conversation_id="chat-1",
    ...     system_prompt="You are Ava, a ship's navigator.",
    ...     auxiliary_context=AuxiliaryContext(memories="Ava owes the user a favor."),
    ...     new_user_message="Where are we headed?",
    ...     max_context_tokens=8000,
    ... )
    >>> llm_messages = result.to_messages()
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, AsyncContextManager, Mapping, Optional, Sequence, Union

from parlance.config import get_settings
from parlance.config.settings import ContextSettings, ParlanceSettings
from parlance.context.budget import TokenBudget, allocate_token_budget
from parlance.context.schemas import ConversationMessage, Message, MessageRole
from parlance.context.summary import (
    SUMMARY_TOKEN_CEILING,
    SummaryCheckpoint,
    SummaryTriggerInfo,
    evaluate_summary_trigger,
    history_tokens,
    needs_size_summarization,
    suppress_trigger,
)
from parlance.context.window import select_history_window
from parlance.core.exceptions import ConfigurationError, ContextCeilingWarning, HistoryReadError
from parlance.telemetry.tokens import (
    DEFAULT_ESTIMATOR,
    TokenEstimator,
    calculate_message_tokens,
    log_token_usage,
)

if TYPE_CHECKING:
    from parlance.core.storage.protocols import (
        LockingBackend,
        MessageHistoryReader,
        SummaryCheckpointStore,
    )


# =============================================================================
# Module Logger
# =============================================================================

logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class AuxiliaryContext:
    """Context injected alongside the system prompt.

    Attributes:
        world_info: World-info / lorebook entries
        memories: Retrieved memories
        current_context: Context extracted for the current turn
        auto_summary: Latest conversation summary
    """

    world_info: str = ""
    memories: str = ""
    current_context: str = ""
    auto_summary: str = ""

    def render(self) -> str:
        """Join the non-empty parts with blank lines for prompt injection."""
        parts = [self.world_info, self.memories, self.current_context, self.auto_summary]
        return "\n\n".join(p.strip() for p in parts if p and p.strip())

    @classmethod
    def coerce(cls, value: Union["AuxiliaryContext", Mapping[str, str], str, None]) -> "AuxiliaryContext":
        """Accept an AuxiliaryContext, a mapping of its fields, or plain text.

        Raises:
            ConfigurationError: If a mapping carries keys that are not fields.
        """
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            return cls(current_context=value)
        data = dict(value)
        unknown = sorted(set(data) - {f.name for f in fields(cls)})
        if unknown:
            raise ConfigurationError(
                f"Unknown auxiliary context keys: {', '.join(unknown)}",
                config_key=unknown[0],
            )
        return cls(**data)


@dataclass(frozen=True)
class TokenBreakdown:
    """Per-component token counts of an assembled turn."""

    system: int
    history: int
    current_message: int
    remaining: int

    def to_dict(self) -> dict[str, int]:
        return {
            "system": self.system,
            "history": self.history,
            "current_message": self.current_message,
            "remaining": self.remaining,
        }


@dataclass
class ConversationResult:
    """The assembled prompt for one turn.

    Produced once per turn and consumed immediately; never stored.

    Attributes:
        messages: System message, selected history, new user message
        truncated: Whether older history was dropped
        total_tokens: system + history + current message tokens
        dropped_messages: Number of dropped older messages
        needs_summarization: Whether the conversation is due for a summary
        token_breakdown: Per-component token counts
        original_total_tokens: Token total had no history been dropped
        framed_tokens: Total including per-message role framing
        budget: The allocation the turn was built against
        summary_trigger: Interval-trigger decision, when the manager evaluated it
    """

    messages: list[ConversationMessage]
    truncated: bool
    total_tokens: int
    dropped_messages: int
    needs_summarization: bool
    token_breakdown: TokenBreakdown
    original_total_tokens: int = 0
    framed_tokens: int = 0
    budget: Optional[TokenBudget] = None
    summary_trigger: Optional[SummaryTriggerInfo] = None

    @property
    def exceeds_context(self) -> bool:
        """True under tolerated single-message overflow."""
        return self.token_breakdown.remaining < 0

    @property
    def near_context_ceiling(self) -> bool:
        return self.budget is not None and self.total_tokens >= self.budget.warning_threshold

    def to_messages(self) -> list[dict[str, str]]:
        """Messages in OpenAI-style role/content format."""
        return [m.to_dict() for m in self.messages]

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": self.to_messages(),
            "truncated": self.truncated,
            "total_tokens": self.total_tokens,
            "dropped_messages": self.dropped_messages,
            "needs_summarization": self.needs_summarization,
            "token_breakdown": self.token_breakdown.to_dict(),
            "original_total_tokens": self.original_total_tokens,
            "framed_tokens": self.framed_tokens,
            "budget": self.budget.to_dict() if self.budget else None,
            "summary_trigger": self.summary_trigger.to_dict() if self.summary_trigger else None,
        }


# =============================================================================
# Pure Assembler
# =============================================================================


def build_conversation(
    system_prompt: str,
    message_history: Sequence[Message],
    new_user_message: str,
    max_context_tokens: int,
    auxiliary_context: Union[AuxiliaryContext, Mapping[str, str], str, None] = None,
    estimator: Optional[TokenEstimator] = None,
    context_settings: Optional[ContextSettings] = None,
    summary_token_ceiling: int = SUMMARY_TOKEN_CEILING,
) -> ConversationResult:
    """Assemble the prompt for one turn.

    The new user message's cost is reserved before history is selected, so
    the window never crowds out the turn being answered.

    Args:
        system_prompt: The system prompt.
        message_history: The full history, oldest to newest.
        new_user_message: The user's new message.
        max_context_tokens: The model's context window.
        auxiliary_context: Context injected after the system prompt.
        estimator: Optional estimator override.
        context_settings: Allocation ratios; defaults to ContextSettings().
        summary_token_ceiling: Size-trigger threshold.

    Returns:
        The ConversationResult. needs_summarization reflects the size
        trigger only.
    """
    estimator = estimator or DEFAULT_ESTIMATOR
    context_settings = context_settings or ContextSettings()
    auxiliary = AuxiliaryContext.coerce(auxiliary_context)

    budget = allocate_token_budget(
        max_context_tokens,
        system_prompt,
        world_info=auxiliary.world_info,
        memories=auxiliary.memories,
        current_context=auxiliary.current_context,
        auto_summary=auxiliary.auto_summary,
        estimator=estimator,
        safety_margin_ratio=context_settings.safety_margin_ratio,
        min_safety_margin=context_settings.min_safety_margin,
        warning_ratio=context_settings.warning_ratio,
    )

    system_tokens = budget.system_prompt_tokens + budget.context_tokens
    user_tokens = estimator.estimate(new_user_message)

    window = select_history_window(
        message_history,
        budget,
        reserved_tokens=user_tokens,
        estimator=estimator,
    )

    rendered = auxiliary.render()
    system_content = f"{system_prompt}\n\n{rendered}" if rendered else system_prompt

    messages = [
        ConversationMessage(role=MessageRole.SYSTEM, content=system_content),
        *window.included,
        ConversationMessage(role=MessageRole.USER, content=new_user_message),
    ]

    total_tokens = system_tokens + window.history_tokens + user_tokens
    original_total = system_tokens + history_tokens(message_history, estimator) + user_tokens
    needs_summarization = needs_size_summarization(original_total, summary_token_ceiling)

    logger.info(
        f"Size trigger: original_total={original_total} truncated_total={total_tokens} "
        f"ceiling={summary_token_ceiling} truncated={window.truncated} "
        f"dropped={window.dropped_count} "
        f"decision={'trigger' if needs_summarization else 'none'}"
    )

    return ConversationResult(
        messages=messages,
        truncated=window.truncated,
        total_tokens=total_tokens,
        dropped_messages=window.dropped_count,
        needs_summarization=needs_summarization,
        token_breakdown=TokenBreakdown(
            system=system_tokens,
            history=window.history_tokens,
            current_message=user_tokens,
            remaining=max_context_tokens - total_tokens,
        ),
        original_total_tokens=original_total,
        framed_tokens=calculate_message_tokens(
            messages,
            estimator=estimator,
            overhead_tokens=context_settings.message_overhead_tokens,
        ),
        budget=budget,
    )


# =============================================================================
# Context Manager
# =============================================================================


class ConversationContextManager:
    """Builds chat turns from stored history and summary checkpoints.

    The manager only reads. It signals that a summary is due; producing the
    summary and writing the new checkpoint belong to an external worker,
    which should hold summary_lock() while it does so.

    Failure handling:
        - History read failure or timeout: HistoryReadError, the turn aborts.
        - Checkpoint read failure or timeout: logged, treated as never
          summarized.
        - Budget exhaustion: not an error, the turn carries no history.

    Attributes:
        settings: Parlance settings in effect
        estimator: Token estimator used for every component
    """

    def __init__(
        self,
        history_reader: "MessageHistoryReader",
        checkpoint_store: "SummaryCheckpointStore",
        locking: Optional["LockingBackend"] = None,
        settings: Optional[ParlanceSettings] = None,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        """Initialize the manager.

        Args:
            history_reader: Source of ordered message history.
            checkpoint_store: Source of summary checkpoints.
            locking: Optional per-conversation summary locking.
            settings: Optional settings instance.
            estimator: Optional estimator override.
        """
        self._history_reader = history_reader
        self._checkpoint_store = checkpoint_store
        self._locking = locking
        self.settings = settings or get_settings()
        self.estimator = estimator or DEFAULT_ESTIMATOR

    @classmethod
    def from_settings(cls, settings: Optional[ParlanceSettings] = None) -> "ConversationContextManager":
        """Create a manager with backends built from settings."""
        from parlance.core.storage.factory import BackendFactory

        settings = settings or get_settings()
        history_reader, checkpoint_store, locking = BackendFactory.create_all_from_settings(settings)
        return cls(history_reader, checkpoint_store, locking=locking, settings=settings)

    @staticmethod
    def summary_lock_key(conversation_id: str) -> str:
        return f"summary_{conversation_id}"

    def summary_lock(self, conversation_id: str) -> AsyncContextManager[None]:
        """Lock held by the summarization worker for a conversation.

        Raises:
            ConfigurationError: If the manager has no locking backend.
        """
        if self._locking is None:
            raise ConfigurationError(
                "No locking backend configured for summary locks",
                config_key="storage.backend",
            )
        return self._locking.lock(
            self.summary_lock_key(conversation_id),
            timeout=self.settings.summary.lock_timeout,
        )

    async def fetch_history(self, conversation_id: str) -> list[Message]:
        """Read a conversation's full history.

        Raises:
            HistoryReadError: If the read fails, times out, or yields
                invalid records.
        """
        timeout = self.settings.storage.read_timeout
        try:
            records = await asyncio.wait_for(
                self._history_reader.fetch(conversation_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise HistoryReadError(
                f"History read timed out after {timeout}s",
                conversation_id=conversation_id,
            ) from e
        except Exception as e:
            raise HistoryReadError(
                f"History read failed: {e}",
                conversation_id=conversation_id,
            ) from e

        if records is None:
            raise HistoryReadError(
                "History reader returned no result",
                conversation_id=conversation_id,
            )

        try:
            messages = [
                record if isinstance(record, Message) else Message.from_record(record)
                for record in records
            ]
        except (TypeError, ValueError) as e:
            raise HistoryReadError(
                f"Invalid message record: {e}",
                conversation_id=conversation_id,
            ) from e

        return sorted(messages, key=lambda m: m.sequence_number)

    async def read_checkpoint(self, conversation_id: str) -> SummaryCheckpoint:
        """Read the summary checkpoint, failing open to "never summarized"."""
        try:
            return await asyncio.wait_for(
                self._checkpoint_store.read(conversation_id),
                timeout=self.settings.storage.read_timeout,
            )
        except Exception as e:
            logger.warning(
                f"Summary checkpoint read failed for {conversation_id}, "
                f"treating as unsummarized: {e!r}"
            )
            return SummaryCheckpoint.empty()

    async def _summary_in_progress(self, conversation_id: str) -> bool:
        if self._locking is None:
            return False
        try:
            return await self._locking.is_locked(self.summary_lock_key(conversation_id))
        except Exception as e:
            logger.warning(f"Summary lock check failed for {conversation_id}: {e!r}")
            return False

    async def _evaluate(self, conversation_id: str, history: Sequence[Message]) -> SummaryTriggerInfo:
        checkpoint = await self.read_checkpoint(conversation_id)
        info = evaluate_summary_trigger(
            history,
            checkpoint,
            interval=self.settings.summary.interval,
            placeholder_marker=self.settings.summary.placeholder_marker,
            conversation_id=conversation_id,
        )
        if info.should_trigger_summary and await self._summary_in_progress(conversation_id):
            logger.info(f"Summary already running for {conversation_id}, trigger suppressed")
            return suppress_trigger(info)
        return info

    async def evaluate_summary_trigger(self, conversation_id: str) -> SummaryTriggerInfo:
        """Evaluate the interval trigger against the full stored history.

        Suitable for UI progress indicators; performs no writes.

        Raises:
            HistoryReadError: If the history cannot be read.
        """
        history = await self.fetch_history(conversation_id)
        return await self._evaluate(conversation_id, history)

    async def assemble(
        self,
        conversation_id: str,
        system_prompt: str,
        auxiliary_context: Union[AuxiliaryContext, Mapping[str, str], str, None],
        new_user_message: str,
        max_context_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> ConversationResult:
        """Assemble the prompt for a new user turn.

        Args:
            conversation_id: The conversation being continued.
            system_prompt: The system prompt.
            auxiliary_context: Context injected after the system prompt.
            new_user_message: The user's new message.
            max_context_tokens: Context window; defaults to settings.
            model: Optional model identifier for usage logging.

        Returns:
            The ConversationResult with both summarization triggers applied.

        Raises:
            HistoryReadError: If the history cannot be read.
        """
        if max_context_tokens is None:
            max_context_tokens = self.settings.context.max_context_tokens
        history = await self.fetch_history(conversation_id)

        result = build_conversation(
            system_prompt,
            history,
            new_user_message,
            max_context_tokens,
            auxiliary_context=auxiliary_context,
            estimator=self.estimator,
            context_settings=self.settings.context,
            summary_token_ceiling=self.settings.summary.token_ceiling,
        )

        trigger = await self._evaluate(conversation_id, history)
        result.summary_trigger = trigger
        result.needs_summarization = result.needs_summarization or trigger.should_trigger_summary

        if result.near_context_ceiling:
            logger.warning(str(ContextCeilingWarning(
                f"Conversation {conversation_id} is near its context ceiling",
                total_tokens=result.total_tokens,
                warning_threshold=result.budget.warning_threshold,
                max_context_tokens=max_context_tokens,
            )))

        log_token_usage(
            conversation_id,
            result.total_tokens,
            max_context_tokens,
            breakdown=result.token_breakdown,
            model=model,
        )

        return result


__all__ = [
    "AuxiliaryContext",
    "TokenBreakdown",
    "ConversationResult",
    "build_conversation",
    "ConversationContextManager",
]
