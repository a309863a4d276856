# backend/courier/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.conversation_service import ConversationService
from ...services.history_service import HistoryService
from ...services.presence_service import PresenceService
from .database import get_db


def get_presence_service(db: Session = Depends(get_db)) -> PresenceService:
    return PresenceService(db)


def get_history_service(db: Session = Depends(get_db)) -> HistoryService:
    return HistoryService(db)


def get_conversation_service(db: Session = Depends(get_db)) -> ConversationService:
    return ConversationService(db)
