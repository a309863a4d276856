# backend/courier/repositories/message_repository.py
"""
Message Repository for the message lifecycle store.

Handles all data access for direct messages:
- Creating messages
- Forward-only status transitions (sent -> delivered -> seen)
- Edits and soft-delete scopes
- Per-viewer visible history

Status transitions are single conditional UPDATE statements, so a
transition that already happened (or a later one) is never undone, even
against writers in other sessions.
"""

from datetime import datetime
import logging
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import RepositoryException
from ..models.message import DeleteScope, Message, MessageStatus
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Rows scanned per round trip while collecting a viewer's visible history.
HISTORY_SCAN_BATCH = 200


class MessageRepository(BaseRepository[Message]):
    """Repository for Message data access."""

    def __init__(self, db: Session):
        super().__init__(db, Message)

    def create_message(
        self,
        conversation_key: str,
        sender_id: str,
        receiver_id: str,
        body: str,
        timestamp: datetime,
        reply_to_id: Optional[str] = None,
        message_id: Optional[str] = None,
    ) -> Message:
        fields = dict(
            conversation_key=conversation_key,
            sender_id=sender_id,
            receiver_id=receiver_id,
            body=body,
            status=MessageStatus.SENT,
            timestamp=timestamp,
            reply_to_id=reply_to_id,
            is_edited=False,
            deleted_for=[],
            delete_scope=DeleteScope.NONE,
            updated_at=timestamp,
        )
        if message_id:
            fields["id"] = message_id
        return self.create(**fields)

    # Status transitions

    def mark_delivered(self, message_id: str, at: datetime) -> bool:
        """
        Transition sent -> delivered.

        Returns:
            True if the row changed, False if it was already delivered/seen
            (or does not exist)
        """
        try:
            result = self.db.execute(
                update(Message)
                .where(Message.id == message_id, Message.status == MessageStatus.SENT)
                .values(status=MessageStatus.DELIVERED, delivered_at=at, updated_at=at)
            )
            return bool(result.rowcount)
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking message {message_id} delivered: {str(e)}")
            raise RepositoryException(f"Failed to mark message delivered: {str(e)}")

    def mark_seen_for_receiver(
        self, message_ids: Sequence[str], receiver_id: str, at: datetime
    ) -> List[Tuple[str, str]]:
        """
        Transition messages addressed to ``receiver_id`` to seen.

        Messages addressed to someone else, unknown ids and messages that
        are already seen are skipped.

        Returns:
            (message_id, sender_id) for every message that changed
        """
        if not message_ids:
            return []
        try:
            candidates = (
                self.db.query(Message.id, Message.sender_id)
                .filter(
                    Message.id.in_(list(message_ids)),
                    Message.receiver_id == receiver_id,
                    Message.status != MessageStatus.SEEN,
                )
                .all()
            )
            if not candidates:
                return []

            changed: List[Tuple[str, str]] = []
            for message_id, sender_id in candidates:
                result = self.db.execute(
                    update(Message)
                    .where(
                        Message.id == message_id,
                        Message.receiver_id == receiver_id,
                        Message.status != MessageStatus.SEEN,
                    )
                    .values(status=MessageStatus.SEEN, seen_at=at, updated_at=at)
                )
                if result.rowcount:
                    changed.append((str(message_id), str(sender_id)))
            return changed
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking messages seen for {receiver_id}: {str(e)}")
            raise RepositoryException(f"Failed to mark messages seen: {str(e)}")

    def find_undelivered_for_receiver(self, receiver_id: str, limit: int = 500) -> List[Message]:
        """Messages addressed to ``receiver_id`` still in the sent state, oldest first."""
        try:
            return (
                self.db.query(Message)
                .filter(Message.receiver_id == receiver_id, Message.status == MessageStatus.SENT)
                .order_by(Message.timestamp.asc(), Message.id.asc())
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading backlog for {receiver_id}: {str(e)}")
            raise RepositoryException(f"Failed to load undelivered messages: {str(e)}")

    # Edit / delete

    def apply_edit(self, message: Message, new_body: str, at: datetime) -> Message:
        try:
            message.body = new_body
            message.is_edited = True
            message.edited_at = at
            message.updated_at = at
            self.db.flush()
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error editing message {message.id}: {str(e)}")
            raise RepositoryException(f"Failed to edit message: {str(e)}")

    def hide_for_user(self, message: Message, user_id: str, at: datetime) -> Message:
        """
        Add ``user_id`` to deleted_for.

        Idempotent, and never downgrades a for_both delete.
        """
        try:
            if user_id not in message.deleted_for:
                message.deleted_for.append(user_id)
            if message.delete_scope == DeleteScope.NONE:
                message.delete_scope = DeleteScope.FOR_SENDER_ONLY
            message.updated_at = at
            self.db.flush()
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error hiding message {message.id}: {str(e)}")
            raise RepositoryException(f"Failed to delete message: {str(e)}")

    def hide_for_both(self, message: Message, at: datetime) -> Message:
        try:
            participants: List[str] = [str(message.sender_id)]
            if message.receiver_id != message.sender_id:
                participants.append(str(message.receiver_id))
            message.deleted_for = participants
            message.delete_scope = DeleteScope.FOR_BOTH
            message.updated_at = at
            self.db.flush()
            return message
        except SQLAlchemyError as e:
            self.logger.error(f"Error deleting message {message.id}: {str(e)}")
            raise RepositoryException(f"Failed to delete message: {str(e)}")

    # History

    def find_visible_history(
        self, conversation_key: str, viewer_id: str, limit: int
    ) -> List[Message]:
        """
        Most recent ``limit`` messages of a conversation visible to ``viewer_id``.

        for_both deletes are excluded in SQL; per-user hides are filtered
        while scanning newest-first, so the cap applies to the filtered set.
        Result is ordered by timestamp ascending with reply targets loaded.
        """
        try:
            collected: List[Message] = []
            offset = 0
            while len(collected) < limit:
                batch = (
                    self.db.query(Message)
                    .options(joinedload(Message.reply_to))
                    .filter(
                        Message.conversation_key == conversation_key,
                        Message.delete_scope != DeleteScope.FOR_BOTH,
                    )
                    .order_by(Message.timestamp.desc(), Message.id.desc())
                    .offset(offset)
                    .limit(HISTORY_SCAN_BATCH)
                    .all()
                )
                if not batch:
                    break
                offset += len(batch)
                collected.extend(m for m in batch if m.is_visible_to(viewer_id))
                if len(batch) < HISTORY_SCAN_BATCH:
                    break

            visible = collected[:limit]
            visible.reverse()
            return visible
        except SQLAlchemyError as e:
            self.logger.error(f"Error loading history for {conversation_key}: {str(e)}")
            raise RepositoryException(f"Failed to load history: {str(e)}")
