# backend/courier/services/messaging/events.py
"""
Outbound realtime event type definitions and builders.

All events follow this structure:
{
    "type": str,           # Event type identifier
    "schema_version": int, # Schema version (currently 1)
    "timestamp": str,      # ISO 8601 timestamp
    "payload": dict        # Event-specific data
}
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ...core.clock import ensure_aware
from ...models.message import DeleteScope, MessageStatus
from ...schemas.message import MessageView
from ...schemas.user import PresenceStatus


class EventType(str, Enum):
    """Valid outbound event types."""

    JOINED = "joined"
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    RECEIVE_MESSAGE = "receive-message"
    MESSAGE_SENT = "message-sent"
    MESSAGE_STATUS_UPDATE = "message-status-update"
    MESSAGES_SEEN = "messages-seen"
    TYPING = "typing"
    MESSAGE_EDITED = "message-edited"
    MESSAGE_DELETED = "message-deleted"
    ONLINE_STATUS = "online-status"
    ERROR = "error"


# Current schema version - increment when payload structure changes
SCHEMA_VERSION = 1

# Wire value of each delete scope in delete-message / message-deleted
DELETE_FOR_WIRE: Dict[DeleteScope, str] = {
    DeleteScope.FOR_SENDER_ONLY: "me",
    DeleteScope.FOR_BOTH: "both",
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return ensure_aware(value).isoformat() if value else None


def build_event(event_type: EventType, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Build a properly structured event.

    Args:
        event_type: The type of event
        payload: Event-specific payload data

    Returns:
        Complete event dict ready to be written to a connection
    """
    return {
        "type": event_type.value,
        "schema_version": SCHEMA_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "payload": payload,
    }


def build_joined_event(user_id: str, connection_id: str) -> Dict[str, Any]:
    return build_event(EventType.JOINED, {"userId": user_id, "connectionId": connection_id})


def build_user_online_event(user_id: str) -> Dict[str, Any]:
    return build_event(EventType.USER_ONLINE, {"userId": user_id})


def build_user_offline_event(user_id: str, last_seen: datetime) -> Dict[str, Any]:
    return build_event(EventType.USER_OFFLINE, {"userId": user_id, "lastSeen": _iso(last_seen)})


def build_receive_message_event(message: MessageView) -> Dict[str, Any]:
    """Build the receive-message event delivered to the receiver."""
    return build_event(EventType.RECEIVE_MESSAGE, message.to_payload())


def build_message_sent_event(message: MessageView) -> Dict[str, Any]:
    """Build the sender-side confirmation of a stored message."""
    return build_event(EventType.MESSAGE_SENT, message.to_payload())


def build_status_update_event(message_id: str, status: MessageStatus) -> Dict[str, Any]:
    return build_event(
        EventType.MESSAGE_STATUS_UPDATE,
        {"messageId": message_id, "status": MessageStatus(status).value},
    )


def build_messages_seen_event(message_ids: List[str], seen_by: str) -> Dict[str, Any]:
    return build_event(EventType.MESSAGES_SEEN, {"messageIds": message_ids, "seenBy": seen_by})


def build_typing_event(user_id: str, is_typing: bool) -> Dict[str, Any]:
    return build_event(EventType.TYPING, {"userId": user_id, "isTyping": is_typing})


def build_message_edited_event(message: MessageView) -> Dict[str, Any]:
    return build_event(
        EventType.MESSAGE_EDITED,
        {
            "messageId": message.id,
            "newMessage": message.message,
            "isEdited": message.is_edited,
        },
    )


def build_message_deleted_event(message_id: str, scope: DeleteScope) -> Dict[str, Any]:
    return build_event(
        EventType.MESSAGE_DELETED,
        {"messageId": message_id, "deleteFor": DELETE_FOR_WIRE[scope]},
    )


def build_online_status_event(status: PresenceStatus) -> Dict[str, Any]:
    return build_event(EventType.ONLINE_STATUS, status.model_dump(by_alias=True, mode="json"))


def build_error_event(message: str, code: str) -> Dict[str, Any]:
    return build_event(EventType.ERROR, {"message": message, "code": code})
