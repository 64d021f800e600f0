"""Shared pytest fixtures for Parlance tests.

This module provides common fixtures used across all test modules:
- Message factories for building histories with known token costs
- Settings cache isolation
- In-memory storage backends

Token costs: the heuristic estimator prices a run of N plain characters
(no spaces, brackets or markup) at ceil(N / 4) tokens, so ``text_of(n)``
yields text that estimates to exactly n tokens.
"""

from __future__ import annotations

from typing import Callable, Optional

import pytest

from parlance.config import clear_settings_cache
from parlance.context import Message, MessageRole
from parlance.core.storage import MemoryCheckpointStore, MemoryLocking, MemoryMessageHistory


def text_of(tokens: int, char: str = "x") -> str:
    """Return text that estimates to exactly ``tokens`` tokens."""
    return char * (tokens * 4)


def make_message(
    sequence_number: int,
    role: MessageRole = MessageRole.USER,
    content: Optional[str] = None,
    is_placeholder: bool = False,
) -> Message:
    return Message(
        id=f"m{sequence_number}",
        content=content if content is not None else f"message {sequence_number}",
        role=role,
        sequence_number=sequence_number,
        is_placeholder=is_placeholder,
    )


def make_exchanges(count: int, start: int = 1) -> list[Message]:
    """Alternate user/assistant messages, ``count`` exchanges from ``start``."""
    messages = []
    seq = start
    for _ in range(count):
        messages.append(make_message(seq, MessageRole.USER))
        messages.append(make_message(seq + 1, MessageRole.ASSISTANT))
        seq += 2
    return messages


# -----------------------------------------------------------------------------
# Test Isolation Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def clean_settings_cache(monkeypatch):
    """Clear cached settings and PARLANCE_ env vars around each test."""
    import os

    for key in [k for k in os.environ if k.startswith("PARLANCE_")]:
        monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


# -----------------------------------------------------------------------------
# Message Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def message_factory() -> Callable[..., Message]:
    """Provide the make_message factory."""
    return make_message


@pytest.fixture
def ten_long_messages() -> list[Message]:
    """Ten alternating messages of 400 tokens each."""
    return [
        make_message(
            i + 1,
            MessageRole.USER if i % 2 == 0 else MessageRole.ASSISTANT,
            content=text_of(400),
        )
        for i in range(10)
    ]


# -----------------------------------------------------------------------------
# Storage Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def history_store() -> MemoryMessageHistory:
    return MemoryMessageHistory()


@pytest.fixture
def checkpoint_store() -> MemoryCheckpointStore:
    return MemoryCheckpointStore()


@pytest.fixture
def locking() -> MemoryLocking:
    return MemoryLocking()
