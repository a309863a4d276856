# backend/courier/models/user.py
"""
Chat user directory with the presence projection.

Identity is issued by an external authentication service; this table only
stores the profile fields the chat UI shows and the persisted presence
flags (is_online, last_seen) maintained by the connection registry.
"""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String

from ..database import Base


class ChatUser(Base):
    __tablename__ = "chat_users"

    user_id = Column(String(128), primary_key=True)
    display_name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=True)
    avatar_url = Column(String(500), nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_seen = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    created_at = Column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<ChatUser(user_id={self.user_id}, online={self.is_online})>"
