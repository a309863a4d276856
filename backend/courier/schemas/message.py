# backend/courier/schemas/message.py
"""
Message projections shared by the realtime protocol and the REST API.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import Field

from ..core.clock import ensure_aware
from ..models.message import DeleteScope, Message, MessageStatus
from ._strict_base import CamelModel


class ReplySummary(CamelModel):
    """Embedded summary of the message being replied to."""

    id: str
    sender_id: str
    message: str
    timestamp: datetime

    @classmethod
    def from_message(cls, message: Message) -> "ReplySummary":
        return cls(
            id=str(message.id),
            sender_id=str(message.sender_id),
            message=str(message.body),
            timestamp=ensure_aware(message.timestamp),
        )


class MessageView(CamelModel):
    """Wire projection of a message record."""

    id: str
    conversation_key: str
    sender_id: str
    receiver_id: str
    message: str
    status: MessageStatus
    timestamp: datetime
    reply_to: Optional[ReplySummary] = None
    is_edited: bool = False
    delete_scope: DeleteScope = DeleteScope.NONE

    @classmethod
    def from_message(
        cls, message: Message, viewer_id: Optional[str] = None
    ) -> "MessageView":
        """
        Build the projection.

        When ``viewer_id`` is given, a reply target hidden from that viewer
        is rendered as null.
        """
        reply: Optional[ReplySummary] = None
        target = message.reply_to
        if target is not None and (viewer_id is None or target.is_visible_to(viewer_id)):
            reply = ReplySummary.from_message(target)
        return cls(
            id=str(message.id),
            conversation_key=str(message.conversation_key),
            sender_id=str(message.sender_id),
            receiver_id=str(message.receiver_id),
            message=str(message.body),
            status=MessageStatus(message.status),
            timestamp=ensure_aware(message.timestamp),
            reply_to=reply,
            is_edited=bool(message.is_edited),
            delete_scope=DeleteScope(message.delete_scope),
        )

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class MessageHistoryResponse(CamelModel):
    """Visible history of one conversation for one viewer."""

    conversation_key: str
    viewer_id: str
    other_user_id: str
    messages: List[MessageView] = Field(default_factory=list)
    count: int = 0
    limit: int
