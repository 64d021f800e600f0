"""Storage backends for Parlance.

Protocols:
    MessageHistoryReader, SummaryCheckpointStore, LockingBackend

Implementations:
    - memory: MemoryMessageHistory, MemoryCheckpointStore, MemoryLocking
    - filesystem: FilesystemMessageHistory, FilesystemCheckpointStore, FilesystemLocking

Example:
    >>> from parlance.core.storage import BackendFactory
    >>> store = BackendFactory.create_checkpoint_store("memory")
"""

from parlance.core.storage.protocols import (
    MessageHistoryReader,
    SummaryCheckpointStore,
    LockingBackend,
)
from parlance.core.storage.memory import (
    MemoryMessageHistory,
    MemoryCheckpointStore,
    MemoryLocking,
)
from parlance.core.storage.filesystem import (
    FilesystemMessageHistory,
    FilesystemCheckpointStore,
    FilesystemLocking,
)
from parlance.core.storage.factory import BackendFactory

__all__ = [
    "MessageHistoryReader",
    "SummaryCheckpointStore",
    "LockingBackend",
    "MemoryMessageHistory",
    "MemoryCheckpointStore",
    "MemoryLocking",
    "FilesystemMessageHistory",
    "FilesystemCheckpointStore",
    "FilesystemLocking",
    "BackendFactory",
]
