"""In-memory storage backend implementation.

In-memory implementations of the storage protocols. Primarily intended for
testing, but also usable when a request layer already holds the history.

Classes:
    MemoryMessageHistory: In-memory message history per conversation.
    MemoryCheckpointStore: In-memory summary checkpoints.
    MemoryLocking: In-memory locking using asyncio locks.

Example:
    >>> history = MemoryMessageHistory()
    >>> history.append("chat-1", message)
    >>> messages = await history.fetch("chat-1")
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable

from parlance.context.schemas import Message
from parlance.context.summary import SummaryCheckpoint
from parlance.core.exceptions import LockTimeout


logger = logging.getLogger(__name__)


# =============================================================================
# Message History
# =============================================================================


class MemoryMessageHistory:
    """In-memory message history.

    Messages are kept sorted by sequence number per conversation. Messages
    are append-only; a sequence number that already exists is rejected.
    """

    def __init__(self) -> None:
        self._messages: dict[str, list[Message]] = {}

    def append(self, conversation_id: str, message: Message) -> None:
        """Append a message to a conversation.

        Raises:
            ValueError: If the sequence number is already used.
        """
        messages = self._messages.setdefault(conversation_id, [])
        if any(m.sequence_number == message.sequence_number for m in messages):
            raise ValueError(
                f"Sequence number {message.sequence_number} already exists in '{conversation_id}'"
            )
        messages.append(message)
        messages.sort(key=lambda m: m.sequence_number)

    def extend(self, conversation_id: str, messages: Iterable[Message]) -> None:
        for message in messages:
            self.append(conversation_id, message)

    async def fetch(self, conversation_id: str) -> list[Message]:
        return list(self._messages.get(conversation_id, []))

    def clear(self) -> None:
        """Clear all conversations. Synchronous for easy use in fixtures."""
        self._messages.clear()


# =============================================================================
# Checkpoint Store
# =============================================================================


class MemoryCheckpointStore:
    """In-memory summary checkpoint store."""

    def __init__(self) -> None:
        self._checkpoints: dict[str, SummaryCheckpoint] = {}
        self._lock = asyncio.Lock()

    async def read(self, conversation_id: str) -> SummaryCheckpoint:
        async with self._lock:
            return self._checkpoints.get(conversation_id, SummaryCheckpoint.empty())

    async def write(self, conversation_id: str, end_sequence_number: int) -> SummaryCheckpoint:
        async with self._lock:
            current = self._checkpoints.get(conversation_id, SummaryCheckpoint.empty())
            if current.has_summaries and end_sequence_number <= current.last_summary_end_message:
                logger.info(
                    f"Ignoring stale checkpoint write for {conversation_id}: "
                    f"{end_sequence_number} <= {current.last_summary_end_message}"
                )
                return current

            checkpoint = SummaryCheckpoint(
                last_summary_end_message=end_sequence_number,
                has_summaries=True,
            )
            self._checkpoints[conversation_id] = checkpoint
            return checkpoint

    def clear(self) -> None:
        self._checkpoints.clear()


# =============================================================================
# Memory Locking
# =============================================================================


class MemoryLocking:
    """In-memory locking using asyncio locks.

    Locks are only valid within the same process and are not distributed.

    Example:
        >>> locking = MemoryLocking()
        >>> async with locking.lock("summary_chat-1"):
        ...     ...
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._held: set[str] = set()
        self._global_lock = asyncio.Lock()

    async def _get_or_create_lock(self, key: str) -> asyncio.Lock:
        async with self._global_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 30.0) -> AsyncIterator[None]:
        """Acquire a lock on key.

        Raises:
            LockTimeout: If the lock cannot be acquired within the timeout.
        """
        lock = await self._get_or_create_lock(key)

        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError:
            raise LockTimeout(key, timeout)

        try:
            async with self._global_lock:
                self._held.add(key)
            yield
        finally:
            async with self._global_lock:
                self._held.discard(key)
            lock.release()

    async def is_locked(self, key: str) -> bool:
        async with self._global_lock:
            if key not in self._locks:
                return False
            return self._locks[key].locked()

    async def try_lock(self, key: str) -> bool:
        lock = await self._get_or_create_lock(key)

        if lock.locked():
            return False

        await lock.acquire()
        async with self._global_lock:
            self._held.add(key)
        return True

    async def release_lock(self, key: str) -> bool:
        async with self._global_lock:
            if key not in self._locks or key not in self._held:
                return False

            self._locks[key].release()
            self._held.discard(key)
            return True

    def clear(self) -> None:
        """Clear all locks.

        Warning: This does not release held locks gracefully.
        Only use in test cleanup.
        """
        self._locks.clear()
        self._held.clear()


__all__ = [
    "MemoryMessageHistory",
    "MemoryCheckpointStore",
    "MemoryLocking",
]
