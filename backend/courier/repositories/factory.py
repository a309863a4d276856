# backend/courier/repositories/factory.py
"""
Repository Factory for the courier messaging service.

Centralizes repository creation so services never construct data access
objects directly, which keeps them easy to mock in tests.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .conversation_repository import ConversationRepository
    from .message_repository import MessageRepository
    from .user_repository import UserRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_message_repository(db: Session) -> "MessageRepository":
        """Create repository for message lifecycle operations."""
        from .message_repository import MessageRepository

        return MessageRepository(db)

    @staticmethod
    def create_conversation_repository(db: Session) -> "ConversationRepository":
        """Create repository for the conversation index."""
        from .conversation_repository import ConversationRepository

        return ConversationRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        """Create repository for the user directory and presence flags."""
        from .user_repository import UserRepository

        return UserRepository(db)
