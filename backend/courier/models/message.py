# backend/courier/models/message.py
"""
Message model for direct conversations.

A message belongs to exactly one conversation (identified by its canonical
conversation key) and carries its own delivery state and per-user
visibility (soft delete) information.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.ext.mutable import MutableList
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON as SAJSON
import ulid

from ..database import Base
from .base_enum import create_safe_enum


class MessageStatus(str, Enum):
    """Delivery state. Transitions only move forward: sent -> delivered -> seen."""

    SENT = "sent"
    DELIVERED = "delivered"
    SEEN = "seen"


class DeleteScope(str, Enum):
    """Who a message has been hidden from."""

    NONE = "none"
    FOR_SENDER_ONLY = "for_sender_only"
    FOR_BOTH = "for_both"


class Message(Base):
    """
    Direct message between two users.

    ``deleted_for`` lists the user ids that no longer see the message;
    ``delete_scope == FOR_BOTH`` implies both participants are in it.
    """

    __tablename__ = "messages"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    conversation_key = Column(String(260), nullable=False)
    sender_id = Column(String(128), nullable=False, index=True)
    receiver_id = Column(String(128), nullable=False, index=True)
    body = Column(Text, nullable=False)
    status = Column(
        create_safe_enum(MessageStatus, "message_status"),
        nullable=False,
        default=MessageStatus.SENT,
    )
    timestamp = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    reply_to_id = Column(
        String(26), ForeignKey("messages.id", ondelete="SET NULL"), nullable=True
    )
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime(timezone=True), nullable=True)
    deleted_for = Column(MutableList.as_mutable(SAJSON), nullable=False, default=list)
    delete_scope = Column(
        create_safe_enum(DeleteScope, "message_delete_scope"),
        nullable=False,
        default=DeleteScope.NONE,
    )
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    seen_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    reply_to = relationship("Message", remote_side=[id], lazy="select")

    __table_args__ = (
        Index("idx_messages_conversation_timestamp", "conversation_key", "timestamp"),
        Index("idx_messages_receiver_status", "receiver_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Message(id={self.id}, conversation={self.conversation_key}, status={self.status})>"
        )

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.sender_id, self.receiver_id)

    def is_visible_to(self, viewer_id: str) -> bool:
        """Visibility rule applied when reconstructing history."""
        if self.delete_scope == DeleteScope.FOR_BOTH:
            return False
        return viewer_id not in (self.deleted_for or [])
