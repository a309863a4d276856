# backend/courier/routes/v1/messages.py
"""
Message routes - API v1

Endpoints:
    GET /history/{other_user_id}    -> Visible history with another user

Sending, seen receipts, edits and deletes go through the realtime
websocket (see ws.py) so that every change is fanned out to live
connections.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Path, Query

from ...api.dependencies.auth import get_current_user_id
from ...api.dependencies.services import get_history_service
from ...schemas.message import MessageHistoryResponse
from ...services.history_service import HistoryService
from ...utils.conversation_keys import USER_ID_PATTERN

logger = logging.getLogger(__name__)

router = APIRouter(tags=["messages"])


@router.get("/history/{other_user_id}", response_model=MessageHistoryResponse)
def get_message_history(
    other_user_id: str = Path(..., pattern=USER_ID_PATTERN),
    limit: Optional[int] = Query(default=None, ge=1, description="Maximum messages to return"),
    current_user_id: str = Depends(get_current_user_id),
    service: HistoryService = Depends(get_history_service),
) -> MessageHistoryResponse:
    """
    Conversation history as seen by the caller.

    Messages deleted for both participants, or deleted by the caller for
    themself, are omitted. Ordered oldest first; at most ``limit`` (capped
    by configuration) of the most recent visible messages.
    """
    return service.load_history(current_user_id, other_user_id, limit)
