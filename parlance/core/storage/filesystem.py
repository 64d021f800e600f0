"""Filesystem storage backend implementation.

Filesystem implementations of the storage protocols, with file-based
locking for concurrent access safety.

Layout under the base directory:
    history/<conversation>.jsonl      one message record per line
    checkpoints/<conversation>.json   {"last_summary_end_message": N, "has_summaries": true}
    locks/<key>.lock                  portalocker lock files

Classes:
    FilesystemMessageHistory: JSON-Lines message history.
    FilesystemCheckpointStore: JSON summary checkpoints with atomic writes.
    FilesystemLocking: File-based locking using portalocker.

Example:
    >>> history = FilesystemMessageHistory(Path("./data/history"))
    >>> messages = await history.fetch("chat-1")
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Union

import aiofiles
import portalocker
from pydantic import ValidationError

from parlance.context.schemas import Message
from parlance.context.summary import SummaryCheckpoint
from parlance.core.exceptions import CheckpointReadError, LockTimeout, StorageError


logger = logging.getLogger(__name__)


def _safe_name(key: str) -> str:
    """Map a key to a single safe filename component."""
    safe_key = key.replace("..", "_").replace("/", "_").replace("\\", "_")
    safe_key = "".join(c if c.isalnum() or c in "._-" else "_" for c in safe_key)
    return safe_key or "_default"


# =============================================================================
# Message History
# =============================================================================


class FilesystemMessageHistory:
    """JSON-Lines message history, one file per conversation.

    Records may use the native or the legacy field names accepted by
    Message.from_record. Blank lines are skipped; any malformed line fails
    the whole read.
    """

    def __init__(self, base_path: Union[str, Path]) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, conversation_id: str) -> Path:
        return self.base_path / f"{_safe_name(conversation_id)}.jsonl"

    async def fetch(self, conversation_id: str) -> list[Message]:
        """Read a conversation's history.

        Raises:
            StorageError: If the file cannot be read or a record is invalid.
        """
        path = self._path(conversation_id)
        if not path.exists():
            return []

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except OSError as e:
            raise StorageError(
                f"Error reading history for '{conversation_id}': {e}",
                operation="read",
                key=conversation_id,
            ) from e

        messages = []
        for line_number, line in enumerate(raw.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                messages.append(Message.from_record(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                raise StorageError(
                    f"Invalid message record at {path.name}:{line_number}: {e}",
                    operation="read",
                    key=conversation_id,
                ) from e

        messages.sort(key=lambda m: m.sequence_number)
        return messages

    async def append(self, conversation_id: str, message: Message) -> None:
        """Append one message record."""
        path = self._path(conversation_id)
        try:
            async with aiofiles.open(path, "a", encoding="utf-8") as f:
                await f.write(message.model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(
                f"Error appending to history for '{conversation_id}': {e}",
                operation="write",
                key=conversation_id,
            ) from e


# =============================================================================
# Checkpoint Store
# =============================================================================


class FilesystemCheckpointStore:
    """JSON summary checkpoints with atomic temp-file writes.

    Writes only ever advance a checkpoint. The store is expected to have a
    single writer per conversation; wrap writes in the summary lock when
    several workers may summarize.
    """

    def __init__(self, base_path: Union[str, Path]) -> None:
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _path(self, conversation_id: str) -> Path:
        return self.base_path / f"{_safe_name(conversation_id)}.json"

    async def read(self, conversation_id: str) -> SummaryCheckpoint:
        """Read the checkpoint.

        Raises:
            CheckpointReadError: If the file exists but cannot be read or parsed.
        """
        path = self._path(conversation_id)
        if not path.exists():
            return SummaryCheckpoint.empty()

        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                data: dict[str, Any] = json.loads(await f.read())
            return SummaryCheckpoint(
                last_summary_end_message=int(data["last_summary_end_message"]),
                has_summaries=bool(data.get("has_summaries", True)),
            )
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CheckpointReadError(
                f"Error reading checkpoint for '{conversation_id}': {e}",
                conversation_id=conversation_id,
            ) from e

    async def write(self, conversation_id: str, end_sequence_number: int) -> SummaryCheckpoint:
        """Upsert the checkpoint if it advances.

        Raises:
            StorageError: If the checkpoint cannot be written.
        """
        async with self._lock:
            try:
                current = await self.read(conversation_id)
            except CheckpointReadError:
                logger.warning(f"Overwriting unreadable checkpoint for {conversation_id}")
                current = SummaryCheckpoint.empty()

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
            path = self._path(conversation_id)
            temp_path = path.with_suffix(path.suffix + ".tmp")
            try:
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(json.dumps(checkpoint.to_dict()))
                temp_path.replace(path)
            except OSError as e:
                temp_path.unlink(missing_ok=True)
                raise StorageError(
                    f"Error writing checkpoint for '{conversation_id}': {e}",
                    operation="write",
                    key=conversation_id,
                ) from e

            return checkpoint


# =============================================================================
# Filesystem Locking
# =============================================================================


class FilesystemLocking:
    """File-based locking using portalocker.

    Works across processes on the same machine.

    Example:
        >>> locking = FilesystemLocking(Path("./locks"))
        >>> async with locking.lock("summary_chat-1", timeout=10.0):
        ...     ...
    """

    def __init__(self, lock_dir: Union[str, Path]) -> None:
        self.lock_dir = Path(lock_dir)
        self.lock_dir.mkdir(parents=True, exist_ok=True)
        self._held_locks: dict[str, portalocker.Lock] = {}
        self._lock = asyncio.Lock()

    def _lock_path(self, key: str) -> Path:
        return self.lock_dir / f"{_safe_name(key)}.lock"

    def _acquire(self, key: str, timeout: float) -> portalocker.Lock:
        lock_obj = portalocker.Lock(
            str(self._lock_path(key)),
            mode="w",
            timeout=timeout,
            flags=portalocker.LOCK_EX | portalocker.LOCK_NB,
        )
        lock_obj.acquire()
        return lock_obj

    @asynccontextmanager
    async def lock(self, key: str, timeout: float = 30.0) -> AsyncIterator[None]:
        """Acquire a lock on key.

        Raises:
            LockTimeout: If the lock cannot be acquired within the timeout.
        """
        loop = asyncio.get_running_loop()
        try:
            lock_obj = await loop.run_in_executor(None, self._acquire, key, timeout)
        except portalocker.LockException:
            raise LockTimeout(key, timeout)

        async with self._lock:
            self._held_locks[key] = lock_obj
        try:
            yield
        finally:
            async with self._lock:
                self._held_locks.pop(key, None)
            lock_obj.release()

    async def is_locked(self, key: str) -> bool:
        """Check whether key is locked by this process or another one."""
        async with self._lock:
            if key in self._held_locks:
                return True

        if not self._lock_path(key).exists():
            return False
        try:
            probe = self._acquire(key, timeout=0)
        except portalocker.LockException:
            return True
        probe.release()
        return False

    async def try_lock(self, key: str) -> bool:
        try:
            lock_obj = self._acquire(key, timeout=0)
        except portalocker.LockException:
            return False

        async with self._lock:
            self._held_locks[key] = lock_obj
        return True

    async def release_lock(self, key: str) -> bool:
        async with self._lock:
            lock_obj = self._held_locks.pop(key, None)
        if lock_obj is None:
            return False
        lock_obj.release()
        return True


__all__ = [
    "FilesystemMessageHistory",
    "FilesystemCheckpointStore",
    "FilesystemLocking",
]
