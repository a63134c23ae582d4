"""
Conversation Store

Each member's saved chats with the budget assistant. Conversations are
private to the member who started them; nobody else in the family can
read, change or delete them.

Exactly one conversation per member is active at a time. Creating one,
or marking one active, deactivates the others in the same transaction.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError

from family_budget.authorization import require_identity
from family_budget.errors import BudgetValidationError, NotFoundError
from family_budget.models.conversation import (
    DEFAULT_CONVERSATION_TITLE,
    ChatMessage,
    Conversation,
)
from family_budget.models.family import RequestIdentity
from family_budget.services.storage import BudgetStorageInterface


logger = structlog.get_logger(__name__)


class ConversationService:
    """
    Usage:
        service = ConversationService(storage)
        conversation = await service.create(identity)
        await service.append(identity, conversation.id, [ChatMessage(role="user", content="hi")])
    """

    def __init__(self, storage: BudgetStorageInterface):
        self._storage = storage

    @staticmethod
    def _build(**fields) -> Conversation:
        try:
            return Conversation(**fields)
        except ValidationError as e:
            first = e.errors()[0]
            raise BudgetValidationError(f"{first['loc'][0]}: {first['msg']}")

    async def create(
        self,
        identity: RequestIdentity,
        title: Optional[str] = None,
        messages: Optional[list[ChatMessage]] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Conversation:
        """Start a conversation and make it the member's active one."""
        identity = require_identity(identity)
        conversation = self._build(
            family_id=identity.family_id,
            user_id=identity.user_id,
            title=title or DEFAULT_CONVERSATION_TITLE,
            messages=messages or [],
            metadata=metadata or {},
            is_active=True,
        )
        await self._storage.save_conversation(conversation)
        logger.info(
            "conversation_created",
            user_id=str(identity.user_id),
            conversation_id=str(conversation.id),
        )
        return conversation

    async def list_conversations(self, identity: RequestIdentity, limit: int = 10) -> list[Conversation]:
        identity = require_identity(identity)
        return await self._storage.list_conversations(identity.user_id, limit=limit)

    async def get(self, identity: RequestIdentity, conversation_id: UUID) -> Conversation:
        """
        Raises:
            NotFoundError: If the conversation is missing or someone else's
        """
        identity = require_identity(identity)
        conversation = await self._storage.get_conversation(identity.user_id, conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation

    async def get_active(self, identity: RequestIdentity) -> Optional[Conversation]:
        """The active conversation, falling back to the most recent one."""
        identity = require_identity(identity)
        return await self._storage.get_active_conversation(identity.user_id)

    async def update(
        self,
        identity: RequestIdentity,
        conversation_id: UUID,
        messages: Optional[list[ChatMessage]] = None,
        title: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
        is_active: Optional[bool] = None,
    ) -> Conversation:
        """
        Replace the given fields. Any update counts as activity.

        Raises:
            NotFoundError: If the conversation is missing or someone else's
        """
        conversation = await self.get(identity, conversation_id)
        data = conversation.model_dump()
        if messages is not None:
            data["messages"] = messages
        if title is not None:
            data["title"] = title
        if metadata is not None:
            data["metadata"] = metadata
        if is_active is not None:
            data["is_active"] = is_active
        data["last_message_at"] = datetime.utcnow()

        updated = self._build(**data)
        return await self._storage.save_conversation(updated)

    async def append(
        self,
        identity: RequestIdentity,
        conversation_id: UUID,
        messages: list[ChatMessage],
    ) -> Conversation:
        """Add messages to the end of a conversation."""
        conversation = await self.get(identity, conversation_id)
        return await self.update(
            identity,
            conversation_id,
            messages=[*conversation.messages, *messages],
        )

    async def delete(self, identity: RequestIdentity, conversation_id: UUID) -> None:
        """
        Raises:
            NotFoundError: If the conversation is missing or someone else's
        """
        identity = require_identity(identity)
        if not await self._storage.delete_conversation(identity.user_id, conversation_id):
            raise NotFoundError("Conversation not found")
