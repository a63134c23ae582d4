"""
Assistant Conversation Models

A conversation is one member's saved chat with the budget assistant.
Each member has at most one active conversation; it is the one the
chat screen reopens.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_CONVERSATION_TITLE = "New conversation"


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """One visible message of a conversation."""

    role: ChatRole
    content: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Conversation(BaseModel):
    """
    A saved assistant chat, owned by exactly one member.

    last_message_at orders the member's conversation list.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    family_id: UUID
    user_id: UUID
    title: str = Field(default=DEFAULT_CONVERSATION_TITLE, min_length=1, max_length=200)
    messages: list[ChatMessage] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    last_message_at: datetime = Field(default_factory=datetime.utcnow)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    def history(self) -> list[dict]:
        """Messages as Gemini content turns."""
        return [
            {
                "role": "user" if message.role == ChatRole.USER else "model",
                "parts": [message.content],
            }
            for message in self.messages
        ]
