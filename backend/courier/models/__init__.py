"""
Database models for the courier messaging service.

- ChatUser: user directory and persisted presence
- Conversation: one summary row per unordered user pair
- Message: direct messages with delivery state and soft-delete scope
"""

from .conversation import Conversation
from .message import DeleteScope, Message, MessageStatus
from .user import ChatUser

__all__ = [
    "ChatUser",
    "Conversation",
    "DeleteScope",
    "Message",
    "MessageStatus",
]
