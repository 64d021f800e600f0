"""Message schemas for Parlance.

Message is the stored, immutable chat message read from the history store.
ConversationMessage is the LLM-facing projection sent to the model.

Message records are accepted in two shapes:
    native:  {"id", "content", "role", "sequence_number", "created_at", "is_placeholder"}
    legacy:  {"id", "content", "is_ai_message", "message_order", "created_at"}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from parlance.config.settings import DEFAULT_PLACEHOLDER_MARKER


class MessageRole(str, Enum):
    """Role of a message in an LLM conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A stored chat message.

    Sequence number is the sole ordering key within a conversation.

    Attributes:
        id: Message identifier
        content: Message text
        role: user or assistant
        sequence_number: Monotonic position within the conversation
        created_at: Creation time, informational only
        is_placeholder: True while the assistant response is still streaming
    """

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    id: str
    content: str = ""
    role: MessageRole
    sequence_number: int = Field(ge=0)
    created_at: Optional[datetime] = None
    is_placeholder: bool = False

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: MessageRole) -> MessageRole:
        """Stored history carries only user and assistant turns."""
        if v == MessageRole.SYSTEM:
            raise ValueError("Stored messages must have role 'user' or 'assistant'")
        return v

    @field_validator("content", mode="before")
    @classmethod
    def coerce_content(cls, v: Any) -> str:
        return "" if v is None else v

    @property
    def is_assistant(self) -> bool:
        return self.role == MessageRole.ASSISTANT

    def is_pending(self, marker: str = DEFAULT_PLACEHOLDER_MARKER) -> bool:
        """Return True for streaming placeholders (flagged or marked in content)."""
        return self.is_placeholder or marker in self.content

    def to_conversation_message(self) -> "ConversationMessage":
        return ConversationMessage(role=self.role, content=self.content)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Message":
        """Build a Message from a native or legacy store record.

        Args:
            record: Mapping in either supported shape.

        Returns:
            The validated Message.
        """
        data = dict(record)
        if "role" not in data and "is_ai_message" in data:
            data["role"] = MessageRole.ASSISTANT if data.pop("is_ai_message") else MessageRole.USER
        if "sequence_number" not in data and "message_order" in data:
            data["sequence_number"] = data.pop("message_order")
        data["id"] = str(data.get("id", data.get("sequence_number", "")))
        return cls.model_validate(data)


@dataclass(frozen=True)
class ConversationMessage:
    """A message as sent to the model."""

    role: MessageRole
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


__all__ = [
    "MessageRole",
    "Message",
    "ConversationMessage",
]
