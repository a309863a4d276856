# backend/courier/services/presence_service.py
"""
Presence Service - the user directory and persisted online/offline flags.

The connection registry is the source of truth for who is connected right
now; this service persists the transitions it reports (is_online,
last_seen) and serves the user directory.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock, ensure_aware
from ..core.exceptions import NotFoundException
from ..models.user import ChatUser
from ..repositories.factory import RepositoryFactory
from ..repositories.user_repository import UserRepository
from ..schemas.user import PresenceStatus, UserResponse
from ..utils.conversation_keys import validate_user_id
from .base import BaseService

logger = logging.getLogger(__name__)


class PresenceService(BaseService):
    """Service for user profiles and persisted presence."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.repository: UserRepository = RepositoryFactory.create_user_repository(db)

    @BaseService.measure_operation("mark_online")
    def mark_online(self, user_id: str, at: Optional[datetime] = None) -> bool:
        """
        Persist that the user came online.

        Unknown users are logged and skipped; identity is owned by the
        authentication service and no record is created here.
        """
        with self.transaction():
            updated = self.repository.set_presence(user_id, True, at or self.now())
        if not updated:
            self.logger.warning(
                f"[PRESENCE] Joined user {user_id} has no directory record",
                extra={"user_id": user_id},
            )
        return updated

    @BaseService.measure_operation("mark_offline")
    def mark_offline(self, user_id: str, at: Optional[datetime] = None) -> bool:
        with self.transaction():
            return self.repository.set_presence(user_id, False, at or self.now())

    def get_status(self, user_id: str) -> PresenceStatus:
        user = self._get_user_or_404(user_id)
        return PresenceStatus(
            user_id=str(user.user_id),
            is_online=bool(user.is_online),
            last_seen=ensure_aware(user.last_seen) if user.last_seen else None,
        )

    @BaseService.measure_operation("upsert_user")
    def upsert_user(
        self,
        user_id: str,
        display_name: str,
        email: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> UserResponse:
        validate_user_id(user_id)
        with self.transaction():
            user = self.repository.upsert_profile(user_id, display_name, email, avatar_url)
            response = UserResponse.from_user(user)
        self.logger.info("User profile saved", extra={"user_id": user_id})
        return response

    def get_user(self, user_id: str) -> UserResponse:
        return UserResponse.from_user(self._get_user_or_404(user_id))

    def list_users(self, limit: Optional[int] = None) -> List[UserResponse]:
        """Directory ordered by display name."""
        return [UserResponse.from_user(u) for u in self.repository.list_by_display_name(limit)]

    def _get_user_or_404(self, user_id: str) -> ChatUser:
        user = self.repository.get_by_id(user_id)
        if user is None:
            raise NotFoundException("User not found", details={"user_id": user_id})
        return user
