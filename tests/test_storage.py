"""Tests for Parlance storage backends.

Test Coverage:
- In-memory history, checkpoints and locking
- Filesystem JSON-Lines history (native and legacy records)
- Filesystem checkpoints: upsert, stale writes, corrupt files
- Filesystem locking with portalocker
- BackendFactory construction and validation
"""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest

from parlance.config import ParlanceSettings
from parlance.config.settings import StorageSettings
from parlance.context import MessageRole, SummaryCheckpoint
from parlance.core.exceptions import (
    CheckpointReadError,
    ConfigurationError,
    LockTimeout,
    StorageError,
)
from parlance.core.storage import (
    BackendFactory,
    FilesystemCheckpointStore,
    FilesystemLocking,
    FilesystemMessageHistory,
    LockingBackend,
    MemoryCheckpointStore,
    MemoryLocking,
    MemoryMessageHistory,
    MessageHistoryReader,
    SummaryCheckpointStore,
)
from tests.conftest import make_exchanges, make_message


# =============================================================================
# Test: In-Memory Backends
# =============================================================================


class TestMemoryMessageHistory:
    """Test the in-memory history."""

    @pytest.mark.asyncio
    async def test_fetch_sorted(self, history_store):
        history_store.append("chat-1", make_message(2))
        history_store.append("chat-1", make_message(1))

        messages = await history_store.fetch("chat-1")

        assert [m.sequence_number for m in messages] == [1, 2]

    @pytest.mark.asyncio
    async def test_unknown_conversation_is_empty(self, history_store):
        assert await history_store.fetch("nobody") == []

    def test_duplicate_sequence_rejected(self, history_store):
        history_store.append("chat-1", make_message(1))

        with pytest.raises(ValueError):
            history_store.append("chat-1", make_message(1))

    @pytest.mark.asyncio
    async def test_fetch_returns_copy(self, history_store):
        history_store.extend("chat-1", make_exchanges(1))
        messages = await history_store.fetch("chat-1")
        messages.clear()

        assert len(await history_store.fetch("chat-1")) == 2

    def test_satisfies_protocol(self, history_store):
        assert isinstance(history_store, MessageHistoryReader)


class TestMemoryCheckpointStore:
    """Test the in-memory checkpoint store."""

    @pytest.mark.asyncio
    async def test_read_default(self, checkpoint_store):
        assert await checkpoint_store.read("chat-1") == SummaryCheckpoint.empty()

    @pytest.mark.asyncio
    async def test_write_advances(self, checkpoint_store):
        await checkpoint_store.write("chat-1", 30)
        checkpoint = await checkpoint_store.read("chat-1")

        assert checkpoint.last_summary_end_message == 30
        assert checkpoint.has_summaries is True

    @pytest.mark.asyncio
    async def test_stale_write_ignored(self, checkpoint_store):
        await checkpoint_store.write("chat-1", 30)
        result = await checkpoint_store.write("chat-1", 30)
        await checkpoint_store.write("chat-1", 12)

        assert result.last_summary_end_message == 30
        assert (await checkpoint_store.read("chat-1")).last_summary_end_message == 30

    def test_satisfies_protocol(self, checkpoint_store):
        assert isinstance(checkpoint_store, SummaryCheckpointStore)


class TestMemoryLocking:
    """Test in-memory locking."""

    @pytest.mark.asyncio
    async def test_lock_and_is_locked(self, locking):
        async with locking.lock("summary_chat-1"):
            assert await locking.is_locked("summary_chat-1")

        assert not await locking.is_locked("summary_chat-1")

    @pytest.mark.asyncio
    async def test_lock_timeout(self, locking):
        async with locking.lock("summary_chat-1"):
            with pytest.raises(LockTimeout):
                async with locking.lock("summary_chat-1", timeout=0.01):
                    pass

    @pytest.mark.asyncio
    async def test_try_lock_and_release(self, locking):
        assert await locking.try_lock("k") is True
        assert await locking.try_lock("k") is False
        assert await locking.release_lock("k") is True
        assert await locking.release_lock("k") is False

    def test_satisfies_protocol(self, locking):
        assert isinstance(locking, LockingBackend)


# =============================================================================
# Test: Filesystem Backends
# =============================================================================


class TestFilesystemMessageHistory:
    """Test the JSON-Lines history."""

    @pytest.mark.asyncio
    async def test_append_and_fetch(self, tmp_path):
        history = FilesystemMessageHistory(tmp_path)
        for message in make_exchanges(2):
            await history.append("chat-1", message)

        messages = await history.fetch("chat-1")

        assert [m.sequence_number for m in messages] == [1, 2, 3, 4]
        assert messages[1].role is MessageRole.ASSISTANT

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        assert await FilesystemMessageHistory(tmp_path).fetch("chat-1") == []

    @pytest.mark.asyncio
    async def test_legacy_records_and_blank_lines(self, tmp_path):
        lines = [
            json.dumps({"id": 7, "content": "Aye.", "is_ai_message": True, "message_order": 2}),
            "",
            json.dumps({"id": 6, "content": "Ready?", "is_ai_message": False, "message_order": 1}),
        ]
        (tmp_path / "chat-1.jsonl").write_text("\n".join(lines) + "\n")

        messages = await FilesystemMessageHistory(tmp_path).fetch("chat-1")

        assert [m.content for m in messages] == ["Ready?", "Aye."]
        assert messages[0].id == "6"

    @pytest.mark.asyncio
    async def test_malformed_line_raises(self, tmp_path):
        (tmp_path / "chat-1.jsonl").write_text("{not json\n")

        with pytest.raises(StorageError):
            await FilesystemMessageHistory(tmp_path).fetch("chat-1")

    @pytest.mark.asyncio
    async def test_conversation_id_sanitized(self, tmp_path):
        history = FilesystemMessageHistory(tmp_path)
        await history.append("../escape", make_message(1))

        assert list(tmp_path.iterdir())[0].parent == tmp_path


class TestFilesystemCheckpointStore:
    """Test JSON checkpoints."""

    @pytest.mark.asyncio
    async def test_upsert(self, tmp_path):
        store = FilesystemCheckpointStore(tmp_path)

        assert await store.read("chat-1") == SummaryCheckpoint.empty()

        await store.write("chat-1", 30)
        await store.write("chat-1", 60)

        checkpoint = await FilesystemCheckpointStore(tmp_path).read("chat-1")
        assert checkpoint.last_summary_end_message == 60
        assert checkpoint.has_summaries is True

    @pytest.mark.asyncio
    async def test_stale_write_ignored(self, tmp_path):
        store = FilesystemCheckpointStore(tmp_path)
        await store.write("chat-1", 60)

        result = await store.write("chat-1", 30)

        assert result.last_summary_end_message == 60

    @pytest.mark.asyncio
    async def test_corrupt_file_raises(self, tmp_path):
        (tmp_path / "chat-1.json").write_text("not json")

        with pytest.raises(CheckpointReadError):
            await FilesystemCheckpointStore(tmp_path).read("chat-1")

    @pytest.mark.asyncio
    async def test_write_replaces_corrupt_file(self, tmp_path):
        (tmp_path / "chat-1.json").write_text("not json")
        store = FilesystemCheckpointStore(tmp_path)

        await store.write("chat-1", 15)

        assert (await store.read("chat-1")).last_summary_end_message == 15
        assert not (tmp_path / "chat-1.json.tmp").exists()


class TestFilesystemLocking:
    """Test portalocker-backed locking."""

    @pytest.mark.asyncio
    async def test_lock_and_is_locked(self, tmp_path):
        locking = FilesystemLocking(tmp_path)

        async with locking.lock("summary_chat-1", timeout=1.0):
            assert await locking.is_locked("summary_chat-1")

        assert not await locking.is_locked("summary_chat-1")

    @pytest.mark.asyncio
    async def test_try_lock_and_release(self, tmp_path):
        locking = FilesystemLocking(tmp_path)

        assert await locking.try_lock("k") is True
        assert await locking.is_locked("k")
        assert await locking.release_lock("k") is True
        assert await locking.release_lock("k") is False

    @pytest.mark.asyncio
    async def test_unlocked_key(self, tmp_path):
        assert not await FilesystemLocking(tmp_path).is_locked("never")

    @pytest.mark.asyncio
    async def test_lock_timeout(self, tmp_path):
        holder = FilesystemLocking(tmp_path)
        contender = FilesystemLocking(tmp_path)

        async with holder.lock("summary_chat-1", timeout=1.0):
            with pytest.raises(LockTimeout):
                async with contender.lock("summary_chat-1", timeout=0.01):
                    pass

    @pytest.mark.asyncio
    async def test_try_lock_while_held(self, tmp_path):
        holder = FilesystemLocking(tmp_path)
        contender = FilesystemLocking(tmp_path)

        async with holder.lock("summary_chat-1", timeout=1.0):
            assert await contender.try_lock("summary_chat-1") is False

        assert await contender.try_lock("summary_chat-1") is True
        assert await contender.release_lock("summary_chat-1") is True


# =============================================================================
# Test: BackendFactory
# =============================================================================


class TestBackendFactory:
    """Test backend construction."""

    def test_memory_defaults(self):
        assert isinstance(BackendFactory.create_history_reader(), MemoryMessageHistory)
        assert isinstance(BackendFactory.create_checkpoint_store(), MemoryCheckpointStore)
        assert isinstance(BackendFactory.create_locking(), MemoryLocking)

    def test_unknown_backend(self):
        with pytest.raises(ConfigurationError):
            BackendFactory.create_history_reader("redis")

    def test_filesystem_requires_path(self):
        with pytest.raises(ConfigurationError):
            BackendFactory.create_checkpoint_store("filesystem")

    def test_backend_type_normalized(self, tmp_path):
        store = BackendFactory.create_checkpoint_store(" FileSystem ", base_path=tmp_path)
        assert isinstance(store, FilesystemCheckpointStore)

    def test_create_all_from_settings(self, tmp_path):
        settings = ParlanceSettings(
            storage=StorageSettings(backend="filesystem", data_dir=tmp_path)
        )

        history, checkpoints, locking = BackendFactory.create_all_from_settings(settings)

        assert isinstance(history, FilesystemMessageHistory)
        assert isinstance(checkpoints, FilesystemCheckpointStore)
        assert isinstance(locking, FilesystemLocking)
        assert (tmp_path / "history").is_dir()
        assert (tmp_path / "locks").is_dir()

    def test_create_all_from_settings_creates_data_dir(self, tmp_path):
        data_dir = tmp_path / "var" / "parlance"
        settings = ParlanceSettings(
            storage=StorageSettings(backend="filesystem", data_dir=data_dir)
        )

        with patch.object(ParlanceSettings, "ensure_directories") as ensure:
            BackendFactory.create_all_from_settings(settings)
        ensure.assert_called_once_with()

        BackendFactory.create_all_from_settings(settings)
        assert data_dir.is_dir()

    def test_memory_backend_creates_no_directories(self, tmp_path):
        data_dir = tmp_path / "unused"
        settings = ParlanceSettings(storage=StorageSettings(backend="memory", data_dir=data_dir))

        history, _, _ = BackendFactory.create_all_from_settings(settings)

        assert isinstance(history, MemoryMessageHistory)
        assert not data_dir.exists()
