# backend/courier/services/message_service.py
"""
Message Service - the message lifecycle store.

Handles business logic for direct messages:
- Message creation with reply validation and conversation upsert
- Forward-only delivery state (sent -> delivered -> seen)
- Edits by the sender
- Soft delete for one participant or for both
- Backlog delivery for a reconnecting receiver

Every public operation is one transaction. Results are returned as
projections built inside the session, so callers (the fanout router) never
touch ORM objects after the session is closed.
"""

from collections import defaultdict
from dataclasses import dataclass, field
import logging
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..core.config import Settings, settings
from ..core.exceptions import (
    InvalidReferenceException,
    MessagePolicyException,
    NotFoundException,
    UnauthorizedActionException,
    ValidationException,
)
from ..core.ulid_helper import is_valid_ulid
from ..models.message import DeleteScope, Message, MessageStatus
from ..repositories.factory import RepositoryFactory
from ..repositories.message_repository import MessageRepository
from ..schemas.message import MessageView
from ..utils.conversation_keys import canonical_pair, validate_user_id
from .base import BaseService
from .conversation_service import ConversationService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LifecyclePolicy:
    """Configurable rules for edits, deletes and backlog delivery."""

    allow_edit_after_seen: bool = True
    allow_delete_after_seen: bool = True
    allow_edit_after_delete: bool = False
    deliver_backlog_on_connect: bool = False
    message_max_length: int = 5000

    @classmethod
    def from_settings(cls, config: Settings) -> "LifecyclePolicy":
        return cls(
            allow_edit_after_seen=config.allow_edit_after_seen,
            allow_delete_after_seen=config.allow_delete_after_seen,
            allow_edit_after_delete=config.allow_edit_after_delete,
            deliver_backlog_on_connect=config.deliver_backlog_on_connect,
            message_max_length=config.message_max_length,
        )


@dataclass
class DeliveryUpdate:
    """A message that moved from sent to delivered."""

    message_id: str
    sender_id: str
    status: MessageStatus = MessageStatus.DELIVERED


@dataclass
class SeenResult:
    """Messages that changed to seen, grouped by their sender."""

    viewer_id: str
    by_sender: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class DeleteResult:
    """Outcome of a delete with the users who must be told about it."""

    message_id: str
    scope: DeleteScope
    requester_id: str
    notify_user_ids: List[str]


class MessageService(BaseService):
    """
    Service for the message lifecycle.

    Handles message creation, state transitions, edits and deletes with
    ownership checks and the configured lifecycle policy.
    """

    def __init__(
        self,
        db: Session,
        clock: Optional[Clock] = None,
        policy: Optional[LifecyclePolicy] = None,
    ):
        """Initialize message service."""
        super().__init__(db, clock)
        self.repository: MessageRepository = RepositoryFactory.create_message_repository(db)
        self.conversations = ConversationService(db, self.clock)
        self.policy = policy or LifecyclePolicy.from_settings(settings)

    def _validate_body(self, body: str) -> str:
        if body is None or not body.strip():
            raise ValidationException("Message content cannot be empty", code="EMPTY_MESSAGE")
        if len(body) > self.policy.message_max_length:
            raise ValidationException(
                f"Message content cannot exceed {self.policy.message_max_length} characters",
                code="MESSAGE_TOO_LONG",
            )
        return body

    def _get_or_404(self, message_id: str) -> Message:
        message = self.repository.get_by_id(message_id)
        if message is None:
            raise NotFoundException("Message not found", details={"message_id": message_id})
        return message

    @BaseService.measure_operation("create_message")
    def create_message(
        self,
        sender_id: str,
        receiver_id: str,
        body: str,
        reply_to_id: Optional[str] = None,
        delivered: bool = False,
    ) -> MessageView:
        """
        Store a new message in the sent state and advance its conversation.

        With ``delivered`` the sent -> delivered transition is applied in the
        same transaction, so a failure stores neither.

        Raises:
            ValidationException: invalid identifiers or body
            InvalidReferenceException: reply_to_id does not resolve to a
                message of the same conversation
        """
        validate_user_id(sender_id)
        validate_user_id(receiver_id)
        body = self._validate_body(body)
        conversation_key = canonical_pair(sender_id, receiver_id)

        with self.transaction():
            target: Optional[Message] = None
            if reply_to_id is not None:
                target = (
                    self.repository.get_by_id(reply_to_id) if is_valid_ulid(reply_to_id) else None
                )
                if target is None or target.conversation_key != conversation_key:
                    raise InvalidReferenceException(
                        "Replied-to message does not exist in this conversation",
                        details={"reply_to": reply_to_id},
                    )

            now = self.now()
            message = self.repository.create_message(
                conversation_key=conversation_key,
                sender_id=sender_id,
                receiver_id=receiver_id,
                body=body,
                timestamp=now,
                reply_to_id=reply_to_id,
            )
            if target is not None:
                message.reply_to = target
            if delivered:
                self.repository.mark_delivered(str(message.id), now)
            self.conversations.upsert(sender_id, receiver_id, str(message.id), now)
            view = MessageView.from_message(message)

        self.logger.info(
            "Message created",
            extra={
                "message_id": view.id,
                "conversation_key": conversation_key,
                "sender_id": sender_id,
                "receiver_id": receiver_id,
                "is_reply": reply_to_id is not None,
                "delivered": delivered,
            },
        )
        return view

    @BaseService.measure_operation("mark_delivered")
    def mark_delivered(self, message_id: str) -> Optional[DeliveryUpdate]:
        """
        Move a message from sent to delivered.

        Returns None when nothing changed (already delivered or seen, or
        unknown id); re-applying a past transition is harmless.
        """
        with self.transaction():
            changed = self.repository.mark_delivered(message_id, self.now())
            if not changed:
                return None
            message = self._get_or_404(message_id)
            return DeliveryUpdate(message_id=str(message.id), sender_id=str(message.sender_id))

    @BaseService.measure_operation("mark_seen")
    def mark_seen(self, message_ids: Sequence[str], viewer_id: str) -> SeenResult:
        """
        Mark messages addressed to ``viewer_id`` as seen.

        Ids addressed to other users, unknown ids and already-seen messages
        are skipped rather than failing the batch.
        """
        validate_user_id(viewer_id)
        unique_ids = list(dict.fromkeys(message_ids))
        with self.transaction():
            changed = self.repository.mark_seen_for_receiver(unique_ids, viewer_id, self.now())

        by_sender: Dict[str, List[str]] = defaultdict(list)
        for message_id, sender_id in changed:
            by_sender[sender_id].append(message_id)

        if len(changed) < len(unique_ids):
            self.logger.debug(
                "Skipped %d message(s) in seen batch for %s",
                len(unique_ids) - len(changed),
                viewer_id,
            )
        return SeenResult(viewer_id=viewer_id, by_sender=dict(by_sender))

    @BaseService.measure_operation("edit_message")
    def edit_message(self, message_id: str, new_body: str, requester_id: str) -> MessageView:
        """
        Replace the body of a message. Only the sender may edit.

        Raises:
            NotFoundException: unknown message
            UnauthorizedActionException: requester is not the sender
            MessagePolicyException: the lifecycle policy forbids the edit
        """
        new_body = self._validate_body(new_body)
        with self.transaction():
            message = self._get_or_404(message_id)
            if message.sender_id != requester_id:
                raise UnauthorizedActionException(
                    "Only the sender can edit this message",
                    details={"message_id": message_id},
                )
            if (
                not self.policy.allow_edit_after_delete
                and message.delete_scope != DeleteScope.NONE
            ):
                raise MessagePolicyException(
                    "Deleted messages cannot be edited", details={"message_id": message_id}
                )
            if not self.policy.allow_edit_after_seen and message.status == MessageStatus.SEEN:
                raise MessagePolicyException(
                    "Seen messages cannot be edited", details={"message_id": message_id}
                )

            self.repository.apply_edit(message, new_body, self.now())
            view = MessageView.from_message(message)

        self.logger.info("Message edited", extra={"message_id": message_id})
        return view

    @BaseService.measure_operation("delete_message")
    def delete_message(
        self, message_id: str, requester_id: str, scope: DeleteScope
    ) -> DeleteResult:
        """
        Hide a message from the requester (FOR_SENDER_ONLY) or from both
        participants (FOR_BOTH).

        Either participant may hide a message from themself; only the
        sender may delete for both. Repeated calls have no further effect.
        """
        if scope == DeleteScope.NONE:
            raise ValidationException("Delete scope is required", code="INVALID_DELETE_SCOPE")

        with self.transaction():
            message = self._get_or_404(message_id)
            if not message.is_participant(requester_id):
                raise UnauthorizedActionException(
                    "You are not a participant of this message",
                    details={"message_id": message_id},
                )
            if scope == DeleteScope.FOR_BOTH and message.sender_id != requester_id:
                raise UnauthorizedActionException(
                    "Only the sender can delete this message for everyone",
                    details={"message_id": message_id},
                )
            if not self.policy.allow_delete_after_seen and message.status == MessageStatus.SEEN:
                raise MessagePolicyException(
                    "Seen messages cannot be deleted", details={"message_id": message_id}
                )

            now = self.now()
            if scope == DeleteScope.FOR_BOTH:
                self.repository.hide_for_both(message, now)
                notify = [str(message.sender_id)]
                if message.receiver_id != message.sender_id:
                    notify.append(str(message.receiver_id))
            else:
                self.repository.hide_for_user(message, requester_id, now)
                notify = [requester_id]

        self.logger.info(
            "Message deleted", extra={"message_id": message_id, "scope": scope.value}
        )
        return DeleteResult(
            message_id=message_id,
            scope=scope,
            requester_id=requester_id,
            notify_user_ids=notify,
        )

    def pending_for_receiver(self, receiver_id: str, limit: int = 500) -> List[str]:
        """Ids of messages addressed to ``receiver_id`` still in the sent state."""
        return [
            str(m.id) for m in self.repository.find_undelivered_for_receiver(receiver_id, limit)
        ]

    @BaseService.measure_operation("deliver_backlog")
    def deliver_backlog(
        self, receiver_id: str, message_ids: Sequence[str]
    ) -> Dict[str, List[str]]:
        """
        Flip a receiver's pending (sent) messages to delivered.

        Ids not addressed to ``receiver_id`` or no longer in the sent state
        are skipped.

        Returns:
            sender_id -> ids that changed, oldest first
        """
        by_sender: Dict[str, List[str]] = defaultdict(list)
        with self.transaction():
            now = self.now()
            messages = sorted(
                self.repository.get_many(message_ids), key=lambda m: (m.timestamp, m.id)
            )
            for message in messages:
                if message.receiver_id != receiver_id:
                    continue
                if self.repository.mark_delivered(str(message.id), now):
                    by_sender[str(message.sender_id)].append(str(message.id))
        return dict(by_sender)
