# backend/courier/schemas/user.py
"""User directory and presence schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import Field, field_validator

from ..core.clock import ensure_aware
from ..models.user import ChatUser
from ..utils.conversation_keys import USER_ID_PATTERN
from ._strict_base import CamelModel


class UserUpsertRequest(CamelModel):
    """Create or update a user's profile."""

    user_id: str = Field(..., pattern=USER_ID_PATTERN)
    display_name: str = Field(..., min_length=1, max_length=100)
    email: Optional[str] = Field(default=None, max_length=255)
    avatar_url: Optional[str] = Field(default=None, max_length=500)

    @field_validator("display_name")
    @classmethod
    def _strip_display_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("display name cannot be blank")
        return stripped


class PresenceStatus(CamelModel):
    """Online state of a user as reported to clients."""

    user_id: str
    is_online: bool
    last_seen: Optional[datetime] = None


class UserResponse(CamelModel):
    user_id: str
    display_name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    is_online: bool
    last_seen: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: ChatUser, is_online: Optional[bool] = None) -> "UserResponse":
        return cls(
            user_id=str(user.user_id),
            display_name=str(user.display_name),
            email=user.email,
            avatar_url=user.avatar_url,
            is_online=bool(user.is_online) if is_online is None else is_online,
            last_seen=ensure_aware(user.last_seen) if user.last_seen else None,
        )


class UserListResponse(CamelModel):
    users: List[UserResponse]
    count: int
