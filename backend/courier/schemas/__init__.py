# backend/courier/schemas/__init__.py
"""Pydantic schemas for the courier REST API and realtime payloads."""

from .conversation import ConversationListResponse, ConversationSummary
from .message import MessageHistoryResponse, MessageView, ReplySummary
from .user import PresenceStatus, UserListResponse, UserResponse, UserUpsertRequest

__all__ = [
    "ConversationListResponse",
    "ConversationSummary",
    "MessageHistoryResponse",
    "MessageView",
    "PresenceStatus",
    "ReplySummary",
    "UserListResponse",
    "UserResponse",
    "UserUpsertRequest",
]
