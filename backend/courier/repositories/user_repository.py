# backend/courier/repositories/user_repository.py
"""
User Repository for the chat user directory and persisted presence.

Handles:
- Profile lookup and upsert
- Online/offline flag updates with last_seen
- Directory listing ordered by display name
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.user import ChatUser
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class UserRepository(BaseRepository[ChatUser]):
    """Repository for chat user data access."""

    def __init__(self, db: Session):
        super().__init__(db, ChatUser)

    def upsert_profile(
        self,
        user_id: str,
        display_name: str,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> ChatUser:
        """Create the user or update its profile fields (presence is left untouched)."""
        user = self.get_by_id(user_id)
        if user is None:
            return self.create(
                user_id=user_id,
                display_name=display_name,
                email=email,
                avatar_url=avatar_url,
            )
        user.display_name = display_name
        user.email = email
        user.avatar_url = avatar_url
        self.db.flush()
        return user

    def set_presence(self, user_id: str, is_online: bool, at: datetime) -> bool:
        """
        Persist the online flag and last_seen timestamp.

        Returns:
            True if a user row was updated, False if the user is unknown
        """
        try:
            result = self.db.execute(
                update(ChatUser)
                .where(ChatUser.user_id == user_id)
                .values(is_online=is_online, last_seen=at, updated_at=at)
            )
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating presence for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to update presence: {str(e)}")

    def list_by_display_name(self, limit: Optional[int] = None) -> List[ChatUser]:
        try:
            query = self.db.query(ChatUser).order_by(ChatUser.display_name.asc(), ChatUser.user_id)
            if limit:
                query = query.limit(limit)
            return query.all()
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing users: {str(e)}")
            raise RepositoryException(f"Failed to list users: {str(e)}")
