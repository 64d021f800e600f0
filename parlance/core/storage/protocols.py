"""Storage protocols consumed by Parlance.

The context core never talks to a database directly. It reads through these
protocols, so any persistence layer (in-memory, filesystem, SQL, hosted
backends) can be plugged in without touching the budget or trigger logic.

Protocols:
    MessageHistoryReader: Ordered message history for a conversation.
    SummaryCheckpointStore: Latest summary checkpoint per conversation.
    LockingBackend: Per-key locking used to serialize summarization.

Example:
    >>> async def latest_end(store: SummaryCheckpointStore, conversation_id: str) -> int:
    ...     checkpoint = await store.read(conversation_id)
    ...     return checkpoint.last_summary_end_message
"""

from __future__ import annotations

from typing import TYPE_CHECKING, AsyncContextManager, Protocol, runtime_checkable

if TYPE_CHECKING:
    from parlance.context.schemas import Message
    from parlance.context.summary import SummaryCheckpoint


@runtime_checkable
class MessageHistoryReader(Protocol):
    """Protocol for reading a conversation's message history."""

    async def fetch(self, conversation_id: str) -> list["Message"]:
        """Fetch every message of a conversation.

        Args:
            conversation_id: The conversation to read.

        Returns:
            Messages in ascending sequence order. Gaps in the sequence are
            allowed; the order must be stable. An unknown conversation
            returns an empty list.

        Raises:
            Exception: Any failure must propagate; implementations must never
                substitute an empty history for a failed read.
        """
        ...


@runtime_checkable
class SummaryCheckpointStore(Protocol):
    """Protocol for reading and writing summary checkpoints."""

    async def read(self, conversation_id: str) -> "SummaryCheckpoint":
        """Read the latest checkpoint.

        Returns:
            The checkpoint, or SummaryCheckpoint.empty() when the
            conversation was never summarized.

        Raises:
            CheckpointReadError: If the store cannot be read.
        """
        ...

    async def write(self, conversation_id: str, end_sequence_number: int) -> "SummaryCheckpoint":
        """Record that a summary covers messages up to end_sequence_number.

        Writes are idempotent upserts keyed on the end sequence number: a
        write that does not advance the checkpoint leaves it unchanged.

        Returns:
            The checkpoint stored after the write.
        """
        ...


@runtime_checkable
class LockingBackend(Protocol):
    """Protocol for per-key locking."""

    def lock(self, key: str, timeout: float = 30.0) -> AsyncContextManager[None]:
        """Acquire a lock on key for the duration of the context.

        Raises:
            LockTimeout: If the lock cannot be acquired within the timeout.
        """
        ...

    async def is_locked(self, key: str) -> bool:
        """Point-in-time check whether key is locked."""
        ...

    async def try_lock(self, key: str) -> bool:
        """Acquire a lock without blocking; False if it is already held."""
        ...

    async def release_lock(self, key: str) -> bool:
        """Release a lock taken with try_lock; False if it wasn't held."""
        ...


__all__ = [
    "MessageHistoryReader",
    "SummaryCheckpointStore",
    "LockingBackend",
]
