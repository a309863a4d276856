# backend/courier/api/dependencies/__init__.py
"""
FastAPI dependencies for the courier service.

Usage:
    from courier.api.dependencies import get_current_user_id, get_history_service
"""

from .auth import get_current_user_id
from .database import get_db
from .realtime import get_connection_registry, get_fanout_router
from .services import (
    get_conversation_service,
    get_history_service,
    get_presence_service,
)

__all__ = [
    "get_current_user_id",
    "get_db",
    "get_connection_registry",
    "get_fanout_router",
    "get_conversation_service",
    "get_history_service",
    "get_presence_service",
]
