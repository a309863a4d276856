# backend/courier/models/conversation.py
"""
Conversation model: one summary row per unordered pair of users.

Design decisions:
- The primary key is the canonical conversation key, so "one conversation
  per pair" is enforced by the key itself rather than by a pair index
- participant_a <= participant_b (code point order), mirroring the key
- last_message_id / last_message_at drive inbox ordering
"""

from datetime import datetime, timezone
from typing import Tuple

from sqlalchemy import Column, DateTime, Index, String

from ..database import Base


class Conversation(Base):
    """
    Summary record for a direct conversation.

    Attributes:
        conversation_key: canonical key derived from the two participants
        participant_a: lower participant id (code point order)
        participant_b: higher participant id
        last_message_id: id of the most recent message
        last_message_at: timestamp of the most recent message
    """

    __tablename__ = "conversations"

    conversation_key = Column(String(260), primary_key=True)
    participant_a = Column(String(128), nullable=False, index=True)
    participant_b = Column(String(128), nullable=False, index=True)
    last_message_id = Column(String(26), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (Index("idx_conversations_last_message", "last_message_at"),)

    def __repr__(self) -> str:
        return f"<Conversation(key={self.conversation_key}, last_message={self.last_message_id})>"

    @property
    def participants(self) -> Tuple[str, str]:
        return str(self.participant_a), str(self.participant_b)

    def get_other_user_id(self, current_user_id: str) -> str:
        """Return the other participant (the user themself for a self-conversation)."""
        if current_user_id == self.participant_a:
            return str(self.participant_b)
        return str(self.participant_a)

    def is_participant(self, user_id: str) -> bool:
        return user_id in (self.participant_a, self.participant_b)
