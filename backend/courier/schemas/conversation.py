# backend/courier/schemas/conversation.py
"""Conversation index schemas."""

from datetime import datetime
from typing import List, Optional

from ..core.clock import ensure_aware
from ..models.conversation import Conversation
from ._strict_base import CamelModel


class ConversationSummary(CamelModel):
    conversation_key: str
    other_user_id: str
    last_message_id: Optional[str] = None
    last_message_at: Optional[datetime] = None

    @classmethod
    def for_viewer(cls, conversation: Conversation, viewer_id: str) -> "ConversationSummary":
        return cls(
            conversation_key=str(conversation.conversation_key),
            other_user_id=conversation.get_other_user_id(viewer_id),
            last_message_id=conversation.last_message_id,
            last_message_at=(
                ensure_aware(conversation.last_message_at)
                if conversation.last_message_at
                else None
            ),
        )


class ConversationListResponse(CamelModel):
    conversations: List[ConversationSummary]
    count: int
