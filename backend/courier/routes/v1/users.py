# backend/courier/routes/v1/users.py
"""
User directory routes - API v1

Endpoints:
    POST /              -> Create or update a user profile
    GET /               -> List users ordered by display name
    GET /{user_id}      -> Profile with live presence
"""

import logging

from fastapi import APIRouter, Depends, Path, status

from ...api.dependencies.realtime import get_connection_registry
from ...api.dependencies.services import get_presence_service
from ...schemas.user import UserListResponse, UserResponse, UserUpsertRequest
from ...services.messaging.registry import ConnectionRegistry
from ...services.presence_service import PresenceService
from ...utils.conversation_keys import USER_ID_PATTERN

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])


@router.post("", response_model=UserResponse, status_code=status.HTTP_200_OK)
def upsert_user(
    request: UserUpsertRequest,
    service: PresenceService = Depends(get_presence_service),
) -> UserResponse:
    return service.upsert_user(
        user_id=request.user_id,
        display_name=request.display_name,
        email=request.email,
        avatar_url=request.avatar_url,
    )


@router.get("", response_model=UserListResponse)
def list_users(
    service: PresenceService = Depends(get_presence_service),
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> UserListResponse:
    users = [
        user.model_copy(update={"is_online": registry.is_online(user.user_id)})
        for user in service.list_users()
    ]
    return UserListResponse(users=users, count=len(users))


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str = Path(..., pattern=USER_ID_PATTERN),
    service: PresenceService = Depends(get_presence_service),
    registry: ConnectionRegistry = Depends(get_connection_registry),
) -> UserResponse:
    """Profile and presence; live connection state wins over the stored flag."""
    user = service.get_user(user_id)
    return user.model_copy(update={"is_online": registry.is_online(user_id)})
