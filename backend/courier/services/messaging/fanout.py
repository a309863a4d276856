# backend/courier/services/messaging/fanout.py
"""
Fanout router: turns inbound client events into state transitions and
routes the resulting events to every live connection of each affected user.

A connection may only join as the identity verified when its transport opened.

Trigger -> fanout targets:
- join: user-online to every other connected user (on the first connection)
- send-message: receive-message to the receiver, message-sent to the sender;
  if the receiver is online, the message is stored as delivered in the same
  transaction and the sender gets a message-status-update
- message-seen: messages-seen to each sender whose messages changed
- typing: typing to the receiver only (never to oneself)
- edit-message: message-edited to sender and receiver
- delete-message: message-deleted to the requester ("me") or both ("both")
- get-online-status: online-status to the requesting connection
- disconnect: user-offline to every other connected user (on the last connection)

Failure policy: a failed trigger emits one ``error`` event to the
originating connection and nothing to anybody else. The router itself
never raises out of ``handle_frame``.

Ordering: sends of one conversation are serialized with a per-conversation
lock held across persist and fan-out, so the receiver observes messages in
the order they were accepted. Transitions on one message are serialized
with a per-message lock.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, TypeVar, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...core.clock import Clock, utc_now
from ...core.config import settings
from ...core.exceptions import (
    DomainException,
    NotFoundException,
    PersistenceException,
    RepositoryException,
    UnauthorizedActionException,
    ValidationException,
)
from ...core.keyed_lock import KeyedLock
from ...database import run_in_session
from ...models.message import MessageStatus
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...schemas.user import PresenceStatus
from ...utils.conversation_keys import canonical_pair
from ..message_service import LifecyclePolicy, MessageService
from ..presence_service import PresenceService
from . import events
from .inbound import (
    DeleteMessagePayload,
    EditMessagePayload,
    JoinPayload,
    MessageSeenPayload,
    OnlineStatusPayload,
    SendMessagePayload,
    TypingPayload,
    parse_inbound,
)
from .registry import Connection, ConnectionRegistry

logger = logging.getLogger(__name__)

T = TypeVar("T")

Handler = Callable[[Connection, Any], Awaitable[None]]


class FanoutRouter:
    """Ingress for realtime events and egress to live connections."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        session_factory: Callable[[], Session],
        clock: Clock = utc_now,
        policy: Optional[LifecyclePolicy] = None,
    ):
        self.registry = registry
        self.session_factory = session_factory
        self.clock = clock
        self.policy = policy or LifecyclePolicy.from_settings(settings)
        self._conversation_locks = KeyedLock("conversation")
        self._message_locks = KeyedLock("message")
        self._teardowns: Set["asyncio.Task[None]"] = set()
        self._handlers: Dict[str, Handler] = {
            "join": self._on_join,
            "send-message": self._on_send_message,
            "message-seen": self._on_message_seen,
            "typing": self._on_typing,
            "edit-message": self._on_edit_message,
            "delete-message": self._on_delete_message,
            "get-online-status": self._on_get_online_status,
        }

    # Ingress

    async def handle_frame(self, connection: Connection, raw: Union[str, bytes, dict]) -> None:
        """Validate and dispatch one inbound frame from ``connection``."""
        try:
            event = parse_inbound(raw)
        except ValidationException as exc:
            prometheus_metrics.record_inbound_event("unknown", "rejected")
            logger.info(
                f"[WS] Rejected malformed frame from {connection.connection_id}",
                extra={"connection_id": connection.connection_id, "details": exc.details},
            )
            await self._reply(connection, events.build_error_event(**exc.to_event_payload()))
            return

        await self.dispatch(connection, event.type, event.payload)

    async def dispatch(self, connection: Connection, event_type: str, payload: Any) -> None:
        handler = self._handlers[event_type]
        try:
            if event_type != "join" and self.registry.user_for(connection.connection_id) is None:
                raise UnauthorizedActionException("Join before sending events")
            await handler(connection, payload)
            prometheus_metrics.record_inbound_event(event_type, "ok")
        except DomainException as exc:
            prometheus_metrics.record_inbound_event(event_type, "error")
            logger.warning(
                f"[FANOUT] {event_type} failed for {connection.connection_id}: {exc.code}",
                extra={
                    "connection_id": connection.connection_id,
                    "event_type": event_type,
                    "code": exc.code,
                },
            )
            await self._reply(connection, events.build_error_event(**exc.to_event_payload()))
        except Exception:
            prometheus_metrics.record_inbound_event(event_type, "error")
            logger.exception(
                f"[FANOUT] Unexpected error handling {event_type} for {connection.connection_id}"
            )
            await self._reply(
                connection,
                events.build_error_event("Internal error processing event", "INTERNAL_ERROR"),
            )

    async def handle_disconnect(self, connection: Connection) -> None:
        """
        Unregister a closed connection and announce the user offline if it was the last.

        The teardown runs as its own task: cancelling the caller (the socket
        handler being torn down) does not stop the offline announcement.
        """
        task = asyncio.create_task(self._teardown(connection))
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)
        await asyncio.shield(task)

    async def _teardown(self, connection: Connection) -> None:
        result = await self.registry.unregister(connection.connection_id)
        if result.became_offline and result.user_id and result.last_seen:
            await self.registry.broadcast(
                events.build_user_offline_event(result.user_id, result.last_seen),
                exclude_user=result.user_id,
            )

    # Handlers

    async def _on_join(self, connection: Connection, payload: JoinPayload) -> None:
        user_id = payload.user_id
        if connection.verified_user_id is None:
            raise UnauthorizedActionException("Connection carries no verified identity")
        if user_id != connection.verified_user_id:
            raise UnauthorizedActionException(
                "userId does not match the authenticated user",
                details={"user_id": user_id},
            )
        result = await self.registry.register(connection, user_id)

        await self._reply(connection, events.build_joined_event(user_id, connection.connection_id))

        if result.became_online:
            await self.registry.broadcast(
                events.build_user_online_event(user_id), exclude_user=user_id
            )
            if self.policy.deliver_backlog_on_connect:
                await self._deliver_backlog(user_id)

    async def _on_send_message(self, connection: Connection, payload: SendMessagePayload) -> None:
        sender_id = self._joined_user(connection)
        if payload.sender_id is not None and payload.sender_id != sender_id:
            raise UnauthorizedActionException("senderId does not match the joined user")
        receiver_id = payload.receiver_id
        conversation_key = canonical_pair(sender_id, receiver_id)

        async with self._conversation_locks.acquire(conversation_key):
            deliver_now = self.registry.is_online(receiver_id)
            message = await self._run(
                lambda db: self._message_service(db).create_message(
                    sender_id,
                    receiver_id,
                    payload.message,
                    payload.reply_to,
                    delivered=deliver_now,
                )
            )

            if receiver_id != sender_id:
                await self.registry.send_to_user(
                    receiver_id, events.build_receive_message_event(message)
                )
            await self.registry.send_to_user(sender_id, events.build_message_sent_event(message))
            if message.status == MessageStatus.DELIVERED:
                await self.registry.send_to_user(
                    sender_id, events.build_status_update_event(message.id, message.status)
                )

        logger.debug(
            f"[FANOUT] Routed message {message.id}",
            extra={"conversation_key": conversation_key, "message_id": message.id},
        )

    async def _on_message_seen(self, connection: Connection, payload: MessageSeenPayload) -> None:
        viewer_id = self._joined_user(connection)
        message_ids = list(dict.fromkeys(payload.message_ids))

        async with self._message_locks.acquire_many(message_ids):
            result = await self._run(
                lambda db: self._message_service(db).mark_seen(message_ids, viewer_id)
            )
            for sender_id, changed_ids in result.by_sender.items():
                await self.registry.send_to_user(
                    sender_id, events.build_messages_seen_event(changed_ids, viewer_id)
                )

    async def _on_typing(self, connection: Connection, payload: TypingPayload) -> None:
        user_id = self._joined_user(connection)
        if payload.receiver_id == user_id:
            return
        await self.registry.send_to_user(
            payload.receiver_id, events.build_typing_event(user_id, payload.is_typing)
        )

    async def _on_edit_message(self, connection: Connection, payload: EditMessagePayload) -> None:
        requester_id = self._joined_user(connection)

        async with self._message_locks.acquire(payload.message_id):
            message = await self._run(
                lambda db: self._message_service(db).edit_message(
                    payload.message_id, payload.new_message, requester_id
                )
            )
            event = events.build_message_edited_event(message)
            for user_id in _unique([message.sender_id, message.receiver_id]):
                await self.registry.send_to_user(user_id, event)

    async def _on_delete_message(
        self, connection: Connection, payload: DeleteMessagePayload
    ) -> None:
        requester_id = self._joined_user(connection)

        async with self._message_locks.acquire(payload.message_id):
            result = await self._run(
                lambda db: self._message_service(db).delete_message(
                    payload.message_id, requester_id, payload.scope
                )
            )
            event = events.build_message_deleted_event(result.message_id, result.scope)
            for user_id in _unique(result.notify_user_ids):
                await self.registry.send_to_user(user_id, event)

    async def _on_get_online_status(
        self, connection: Connection, payload: OnlineStatusPayload
    ) -> None:
        user_id = payload.user_id
        live = self.registry.is_online(user_id)
        try:
            stored = await self._run(lambda db: PresenceService(db, self.clock).get_status(user_id))
            status = PresenceStatus(user_id=user_id, is_online=live, last_seen=stored.last_seen)
        except NotFoundException:
            if not live:
                raise
            status = PresenceStatus(user_id=user_id, is_online=True, last_seen=None)
        await self._reply(connection, events.build_online_status_event(status))

    # Helpers

    async def _deliver_backlog(self, receiver_id: str) -> None:
        """Flip a reconnecting user's pending messages to delivered and notify their senders."""
        pending = await self._run(
            lambda db: self._message_service(db).pending_for_receiver(receiver_id)
        )
        if not pending:
            return
        async with self._message_locks.acquire_many(pending):
            delivered = await self._run(
                lambda db: self._message_service(db).deliver_backlog(receiver_id, pending)
            )
            for sender_id, message_ids in delivered.items():
                for message_id in message_ids:
                    await self.registry.send_to_user(
                        sender_id,
                        events.build_status_update_event(message_id, MessageStatus.DELIVERED),
                    )
        logger.info(
            f"[FANOUT] Delivered backlog for {receiver_id}",
            extra={"receiver_id": receiver_id, "count": sum(len(v) for v in delivered.values())},
        )

    def _message_service(self, db: Session) -> MessageService:
        return MessageService(db, self.clock, self.policy)

    def _joined_user(self, connection: Connection) -> str:
        user_id = self.registry.user_for(connection.connection_id)
        if user_id is None:
            raise UnauthorizedActionException("Join before sending events")
        return user_id

    async def _run(self, func: Callable[[Session], T]) -> T:
        """Run one unit of store work off the event loop."""
        try:
            return await run_in_session(self.session_factory, func)
        except (SQLAlchemyError, RepositoryException) as exc:
            logger.error(f"[FANOUT] Store operation failed: {exc}")
            raise PersistenceException("The message store is temporarily unavailable") from exc

    async def _reply(self, connection: Connection, event: Dict[str, Any]) -> None:
        """Write directly to the originating connection, joined or not."""
        try:
            await connection.send_json(event)
            prometheus_metrics.record_event_emitted(str(event.get("type")))
        except Exception as exc:
            logger.warning(
                f"[WS] Reply to {connection.connection_id} failed: {exc}",
                extra={"connection_id": connection.connection_id},
            )


def _unique(user_ids: List[str]) -> List[str]:
    return list(dict.fromkeys(user_ids))
