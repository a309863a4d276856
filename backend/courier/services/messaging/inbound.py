# backend/courier/services/messaging/inbound.py
"""
Inbound realtime frames as a tagged union.

Every frame is ``{"type": <name>, "payload": {...}}``. Each event name has
one fixed payload shape; anything else (unknown type, missing or extra
fields, wrong types) is rejected here with an INVALID_EVENT error before
any state is touched.
"""

from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import Field, TypeAdapter, ValidationError

from ...core.config import settings
from ...core.exceptions import ValidationException
from ...models.message import DeleteScope
from ...schemas._strict_base import CamelModel, StrictRequestModel
from ...utils.conversation_keys import USER_ID_PATTERN

MAX_SEEN_BATCH = 500

UserId = Annotated[str, Field(pattern=USER_ID_PATTERN)]
MessageId = Annotated[str, Field(min_length=26, max_length=26)]
MessageBody = Annotated[str, Field(min_length=1, max_length=settings.message_max_length)]


# Payloads


class JoinPayload(CamelModel):
    user_id: UserId


class SendMessagePayload(CamelModel):
    receiver_id: UserId
    message: MessageBody
    # Validated by the lifecycle store so a dangling id surfaces as INVALID_REFERENCE
    reply_to: Optional[str] = Field(default=None, max_length=64)
    sender_id: Optional[UserId] = None


class MessageSeenPayload(CamelModel):
    message_ids: List[MessageId] = Field(..., min_length=1, max_length=MAX_SEEN_BATCH)


class TypingPayload(CamelModel):
    receiver_id: UserId
    is_typing: bool


class EditMessagePayload(CamelModel):
    message_id: MessageId
    new_message: MessageBody


class DeleteMessagePayload(CamelModel):
    message_id: MessageId
    delete_for: Literal["me", "both"]

    @property
    def scope(self) -> DeleteScope:
        return DeleteScope.FOR_BOTH if self.delete_for == "both" else DeleteScope.FOR_SENDER_ONLY


class OnlineStatusPayload(CamelModel):
    user_id: UserId


# Frames


class JoinEvent(StrictRequestModel):
    type: Literal["join"]
    payload: JoinPayload


class SendMessageEvent(StrictRequestModel):
    type: Literal["send-message"]
    payload: SendMessagePayload


class MessageSeenEvent(StrictRequestModel):
    type: Literal["message-seen"]
    payload: MessageSeenPayload


class TypingEvent(StrictRequestModel):
    type: Literal["typing"]
    payload: TypingPayload


class EditMessageEvent(StrictRequestModel):
    type: Literal["edit-message"]
    payload: EditMessagePayload


class DeleteMessageEvent(StrictRequestModel):
    type: Literal["delete-message"]
    payload: DeleteMessagePayload


class GetOnlineStatusEvent(StrictRequestModel):
    type: Literal["get-online-status"]
    payload: OnlineStatusPayload


InboundEvent = Annotated[
    Union[
        JoinEvent,
        SendMessageEvent,
        MessageSeenEvent,
        TypingEvent,
        EditMessageEvent,
        DeleteMessageEvent,
        GetOnlineStatusEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter: TypeAdapter[Any] = TypeAdapter(InboundEvent)


def parse_inbound(raw: Union[str, bytes, dict]) -> InboundEvent:
    """
    Validate one inbound frame.

    Raises:
        ValidationException: code INVALID_EVENT, with the first validation
            problem in ``details``
    """
    try:
        if isinstance(raw, (str, bytes)):
            return _inbound_adapter.validate_json(raw)
        return _inbound_adapter.validate_python(raw)
    except ValidationError as exc:
        errors = exc.errors(include_url=False, include_input=False)
        first = errors[0] if errors else {}
        raise ValidationException(
            "Malformed event",
            code="INVALID_EVENT",
            details={
                "location": [str(part) for part in first.get("loc", ())],
                "reason": first.get("msg", "invalid"),
            },
        ) from exc
