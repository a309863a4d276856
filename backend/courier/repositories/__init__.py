# backend/courier/repositories/__init__.py
"""
Repository layer for the courier messaging service.

Key Components:
- BaseRepository: generic CRUD foundation, never commits
- MessageRepository: message lifecycle (create, transitions, soft delete, history)
- ConversationRepository: conversation index (upsert, listing)
- UserRepository: user directory and persisted presence
- RepositoryFactory: creates repositories for services

Usage:
    from courier.repositories import RepositoryFactory

    repository = RepositoryFactory.create_message_repository(db)
    history = repository.find_visible_history(key, viewer_id, limit=100)
"""

from .base_repository import BaseRepository
from .conversation_repository import ConversationRepository
from .factory import RepositoryFactory
from .message_repository import MessageRepository
from .user_repository import UserRepository

__all__ = [
    "BaseRepository",
    "ConversationRepository",
    "MessageRepository",
    "RepositoryFactory",
    "UserRepository",
]
