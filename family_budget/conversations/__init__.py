"""Saved assistant conversations."""

from family_budget.conversations.service import ConversationService

__all__ = ["ConversationService"]
