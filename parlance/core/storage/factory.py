"""Backend factory for creating storage instances from configuration.

Classes:
    BackendFactory: Factory for history, checkpoint and locking backends.

Example:
    >>> from parlance.config import get_settings
    >>> history, checkpoints, locking = BackendFactory.create_all_from_settings(get_settings())
    >>>
    >>> # Or use in-memory backends for testing
    >>> checkpoints = BackendFactory.create_checkpoint_store("memory")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from parlance.config.settings import ParlanceSettings
from parlance.core.exceptions import ConfigurationError
from parlance.core.storage.filesystem import (
    FilesystemCheckpointStore,
    FilesystemLocking,
    FilesystemMessageHistory,
)
from parlance.core.storage.memory import MemoryCheckpointStore, MemoryLocking, MemoryMessageHistory
from parlance.core.storage.protocols import LockingBackend, MessageHistoryReader, SummaryCheckpointStore


logger = logging.getLogger(__name__)


class BackendFactory:
    """Factory for creating storage backend instances.

    Supported backend types:
        - "filesystem": Local filesystem storage
        - "memory": In-memory storage (for testing)
    """

    BACKENDS = frozenset({"filesystem", "memory"})

    @staticmethod
    def _normalize(backend_type: str) -> str:
        normalized = backend_type.lower().strip()
        if normalized not in BackendFactory.BACKENDS:
            raise ConfigurationError(
                f"Unknown storage backend type: '{backend_type}'. "
                f"Supported types: {', '.join(sorted(BackendFactory.BACKENDS))}",
                config_key="storage.backend",
            )
        return normalized

    @staticmethod
    def _require_path(path: Optional[Union[str, Path]], name: str) -> Path:
        if path is None:
            raise ConfigurationError(
                f"{name} is required for the filesystem backend",
                config_key="storage.data_dir",
            )
        return Path(path)

    @staticmethod
    def create_history_reader(
        backend_type: str = "memory",
        base_path: Optional[Union[str, Path]] = None,
    ) -> MessageHistoryReader:
        """Create a message history reader.

        Raises:
            ConfigurationError: If backend_type is unknown or base_path is
                missing for the filesystem backend.
        """
        if BackendFactory._normalize(backend_type) == "filesystem":
            path = BackendFactory._require_path(base_path, "base_path")
            logger.debug(f"Creating FilesystemMessageHistory at {path}")
            return FilesystemMessageHistory(path)

        logger.debug("Creating MemoryMessageHistory")
        return MemoryMessageHistory()

    @staticmethod
    def create_checkpoint_store(
        backend_type: str = "memory",
        base_path: Optional[Union[str, Path]] = None,
    ) -> SummaryCheckpointStore:
        """Create a summary checkpoint store."""
        if BackendFactory._normalize(backend_type) == "filesystem":
            path = BackendFactory._require_path(base_path, "base_path")
            logger.debug(f"Creating FilesystemCheckpointStore at {path}")
            return FilesystemCheckpointStore(path)

        logger.debug("Creating MemoryCheckpointStore")
        return MemoryCheckpointStore()

    @staticmethod
    def create_locking(
        backend_type: str = "memory",
        lock_dir: Optional[Union[str, Path]] = None,
    ) -> LockingBackend:
        """Create a locking backend."""
        if BackendFactory._normalize(backend_type) == "filesystem":
            path = BackendFactory._require_path(lock_dir, "lock_dir")
            logger.debug(f"Creating FilesystemLocking at {path}")
            return FilesystemLocking(path)

        logger.debug("Creating MemoryLocking")
        return MemoryLocking()

    @staticmethod
    def create_all_from_settings(
        settings: ParlanceSettings,
    ) -> tuple[MessageHistoryReader, SummaryCheckpointStore, LockingBackend]:
        """Create history, checkpoint and locking backends from settings.

        The filesystem backend lays its data out as history/, checkpoints/
        and locks/ under storage.data_dir.
        """
        backend = settings.storage.backend
        data_dir = settings.storage.data_dir

        if backend == "memory":
            return (
                BackendFactory.create_history_reader("memory"),
                BackendFactory.create_checkpoint_store("memory"),
                BackendFactory.create_locking("memory"),
            )

        settings.ensure_directories()
        return (
            BackendFactory.create_history_reader("filesystem", base_path=data_dir / "history"),
            BackendFactory.create_checkpoint_store("filesystem", base_path=data_dir / "checkpoints"),
            BackendFactory.create_locking("filesystem", lock_dir=data_dir / "locks"),
        )


__all__ = [
    "BackendFactory",
]
