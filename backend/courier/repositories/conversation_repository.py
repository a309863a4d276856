# backend/courier/repositories/conversation_repository.py
"""
Conversation Repository for the conversation index.

One row per unordered user pair, keyed by the canonical conversation key.
The upsert is a single INSERT ... ON CONFLICT DO UPDATE statement so two
concurrent first messages for the same pair cannot create two rows, and
the last message pointer only ever moves forward in time.
"""

from datetime import datetime
import logging
from typing import List, Optional

from sqlalchemy import case, or_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.conversation import Conversation
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ConversationRepository(BaseRepository[Conversation]):
    """Repository for Conversation data access."""

    def __init__(self, db: Session):
        super().__init__(db, Conversation)

    def find_by_key(self, conversation_key: str) -> Optional[Conversation]:
        return self.get_by_id(conversation_key)

    def upsert(
        self,
        conversation_key: str,
        participant_a: str,
        participant_b: str,
        last_message_id: str,
        last_message_at: datetime,
    ) -> Conversation:
        """
        Create the conversation or advance its last message pointer.

        Participants must already be in canonical order. An older
        last_message_at never overwrites a newer one, so replays and
        out-of-order calls are harmless.
        """
        try:
            dialect = self.dialect_name
            if dialect in ("postgresql", "sqlite"):
                insert_fn = pg_insert if dialect == "postgresql" else sqlite_insert
                stmt = insert_fn(Conversation).values(
                    conversation_key=conversation_key,
                    participant_a=participant_a,
                    participant_b=participant_b,
                    last_message_id=last_message_id,
                    last_message_at=last_message_at,
                    created_at=last_message_at,
                    updated_at=last_message_at,
                )
                is_newer = or_(
                    Conversation.last_message_at.is_(None),
                    stmt.excluded.last_message_at >= Conversation.last_message_at,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=[Conversation.conversation_key],
                    set_={
                        "last_message_id": case(
                            (is_newer, stmt.excluded.last_message_id),
                            else_=Conversation.last_message_id,
                        ),
                        "last_message_at": case(
                            (is_newer, stmt.excluded.last_message_at),
                            else_=Conversation.last_message_at,
                        ),
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                self.db.execute(stmt)
            else:
                self._upsert_orm(
                    conversation_key, participant_a, participant_b, last_message_id, last_message_at
                )

            conversation = self.db.get(Conversation, conversation_key, populate_existing=True)
            if conversation is None:
                raise RepositoryException(f"Conversation {conversation_key} missing after upsert")
            return conversation
        except SQLAlchemyError as e:
            self.logger.error(f"Error upserting conversation {conversation_key}: {str(e)}")
            raise RepositoryException(f"Failed to upsert conversation: {str(e)}")

    def _upsert_orm(
        self,
        conversation_key: str,
        participant_a: str,
        participant_b: str,
        last_message_id: str,
        last_message_at: datetime,
    ) -> None:
        """Portable fallback for dialects without ON CONFLICT."""
        conversation = self.get_by_id(conversation_key)
        if conversation is None:
            self.create(
                conversation_key=conversation_key,
                participant_a=participant_a,
                participant_b=participant_b,
                last_message_id=last_message_id,
                last_message_at=last_message_at,
            )
            return
        if conversation.last_message_at is None or last_message_at >= conversation.last_message_at:
            conversation.last_message_id = last_message_id
            conversation.last_message_at = last_message_at
        self.db.flush()

    def find_for_user(self, user_id: str, limit: int = 50) -> List[Conversation]:
        """Conversations the user participates in, most recent activity first."""
        try:
            return (
                self.db.query(Conversation)
                .filter(
                    or_(
                        Conversation.participant_a == user_id,
                        Conversation.participant_b == user_id,
                    )
                )
                .order_by(Conversation.last_message_at.desc(), Conversation.conversation_key)
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error listing conversations for {user_id}: {str(e)}")
            raise RepositoryException(f"Failed to list conversations: {str(e)}")
