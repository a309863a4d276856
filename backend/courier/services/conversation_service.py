# backend/courier/services/conversation_service.py
"""
Conversation Service - the conversation index.

Maintains exactly one summary row per unordered pair of users and lists a
user's conversations by most recent activity.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..models.conversation import Conversation
from ..repositories.conversation_repository import ConversationRepository
from ..repositories.factory import RepositoryFactory
from ..schemas.conversation import ConversationSummary
from ..utils.conversation_keys import canonical_pair, ordered_pair, validate_user_id
from .base import BaseService

logger = logging.getLogger(__name__)


class ConversationService(BaseService):
    """Service for the conversation index."""

    def __init__(self, db: Session, clock: Optional[Clock] = None):
        super().__init__(db, clock)
        self.repository: ConversationRepository = (
            RepositoryFactory.create_conversation_repository(db)
        )

    @BaseService.measure_operation("upsert_conversation")
    def upsert(
        self,
        user_a: str,
        user_b: str,
        last_message_id: str,
        last_message_at: datetime,
    ) -> Conversation:
        """
        Create-or-update the conversation of ``user_a`` and ``user_b``.

        Participant order does not matter. Runs inside the caller's
        transaction (flushes, never commits), so a message and its
        conversation pointer are stored atomically.
        """
        participant_a, participant_b = ordered_pair(user_a, user_b)
        return self.repository.upsert(
            conversation_key=canonical_pair(participant_a, participant_b),
            participant_a=participant_a,
            participant_b=participant_b,
            last_message_id=last_message_id,
            last_message_at=last_message_at,
        )

    def get_for_pair(self, user_a: str, user_b: str) -> Optional[Conversation]:
        return self.repository.find_by_key(canonical_pair(user_a, user_b))

    @BaseService.measure_operation("list_conversations")
    def list_for_user(self, user_id: str, limit: int = 50) -> List[ConversationSummary]:
        """The user's conversations, most recent activity first."""
        validate_user_id(user_id)
        conversations = self.repository.find_for_user(user_id, limit=limit)
        return [ConversationSummary.for_viewer(c, user_id) for c in conversations]
