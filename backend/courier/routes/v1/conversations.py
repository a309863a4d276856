# backend/courier/routes/v1/conversations.py
"""
Conversations routes - API v1

Endpoints:
    GET /   -> List the caller's conversations, most recent first
"""

from fastapi import APIRouter, Depends, Query

from ...api.dependencies.auth import get_current_user_id
from ...api.dependencies.services import get_conversation_service
from ...schemas.conversation import ConversationListResponse
from ...services.conversation_service import ConversationService

router = APIRouter(tags=["conversations"])


@router.get("", response_model=ConversationListResponse)
def list_conversations(
    limit: int = Query(default=50, ge=1, le=200),
    current_user_id: str = Depends(get_current_user_id),
    service: ConversationService = Depends(get_conversation_service),
) -> ConversationListResponse:
    conversations = service.list_for_user(current_user_id, limit=limit)
    return ConversationListResponse(conversations=conversations, count=len(conversations))
