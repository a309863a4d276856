# backend/courier/services/messaging/presence_store.py
"""
Presence store backed by the relational database.

Bridges the async connection registry to the synchronous PresenceService:
every call runs in a worker thread with its own short-lived session.
"""

from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from ...core.clock import Clock, utc_now
from ...database import run_in_session
from ..presence_service import PresenceService


class DatabasePresenceStore:
    """PresenceStore implementation persisting to the chat_users table."""

    def __init__(self, session_factory: Callable[[], Session], clock: Clock = utc_now):
        self.session_factory = session_factory
        self.clock = clock

    async def mark_online(self, user_id: str, at: datetime) -> None:
        await run_in_session(
            self.session_factory,
            lambda db: PresenceService(db, self.clock).mark_online(user_id, at),
        )

    async def mark_offline(self, user_id: str, at: datetime) -> None:
        await run_in_session(
            self.session_factory,
            lambda db: PresenceService(db, self.clock).mark_offline(user_id, at),
        )
