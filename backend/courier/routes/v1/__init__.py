# backend/courier/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1, plus the realtime websocket.
"""

from . import conversations, messages, users, ws

__all__ = [
    "conversations",
    "messages",
    "users",
    "ws",
]
