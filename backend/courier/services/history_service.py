# backend/courier/services/history_service.py
"""
History Service - reconstructs what one viewer can see of a conversation.

Messages deleted for both participants are hidden from everyone; messages a
viewer deleted for themself are hidden from that viewer only. The sequence
holds the most recent ``limit`` visible messages in ascending time order.
There is no pagination cursor: the cap is fixed by configuration.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ValidationException
from ..repositories.factory import RepositoryFactory
from ..repositories.message_repository import MessageRepository
from ..schemas.message import MessageHistoryResponse, MessageView
from ..utils.conversation_keys import canonical_pair
from .base import BaseService

logger = logging.getLogger(__name__)


class HistoryService(BaseService):
    """Per-viewer visible history."""

    def __init__(
        self,
        db: Session,
        default_limit: Optional[int] = None,
        max_limit: Optional[int] = None,
    ):
        super().__init__(db)
        self.repository: MessageRepository = RepositoryFactory.create_message_repository(db)
        self.default_limit = default_limit or settings.history_default_limit
        self.max_limit = max_limit or settings.history_max_limit

    def resolve_limit(self, limit: Optional[int]) -> int:
        """Apply the default and clamp to the configured maximum."""
        if limit is None:
            return self.default_limit
        if limit <= 0:
            raise ValidationException("History limit must be positive", code="INVALID_LIMIT")
        return min(limit, self.max_limit)

    @BaseService.measure_operation("load_history")
    def load_history(
        self, viewer_id: str, other_id: str, limit: Optional[int] = None
    ) -> MessageHistoryResponse:
        conversation_key = canonical_pair(viewer_id, other_id)
        effective_limit = self.resolve_limit(limit)

        messages = self.repository.find_visible_history(
            conversation_key, viewer_id, effective_limit
        )
        views = [MessageView.from_message(m, viewer_id=viewer_id) for m in messages]

        return MessageHistoryResponse(
            conversation_key=conversation_key,
            viewer_id=viewer_id,
            other_user_id=other_id,
            messages=views,
            count=len(views),
            limit=effective_limit,
        )
