"""WebSocket frame models.

Every frame is a JSON object whose ``action`` field names the event kind.
``new_message`` frames embed the message under ``message``; global room
messages name the sender ``from``, direct conversation messages carry
``sender_id`` and ``conversation_id``.
"""
from __future__ import annotations

import json
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from chat_sync.application.dto.events import InboundEvent, NewMessage, OtherEvent
from chat_sync.application.exceptions import MalformedPayload
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.scope import GLOBAL_SCOPE, Scope

NEW_MESSAGE = "new_message"


class WireMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    sender_id: str = Field(min_length=1, validation_alias=AliasChoices("sender_id", "from"))
    content: str
    timestamp: int
    conversation_id: str | None = None

    @property
    def scope(self) -> Scope:
        if self.conversation_id:
            return Scope.direct(self.conversation_id)
        return GLOBAL_SCOPE

    def to_domain(self) -> Message:
        return Message(
            id=self.id,
            scope=self.scope,
            sender_id=self.sender_id,
            content=self.content,
            timestamp=self.timestamp,
        )


class WsInbound(BaseModel):
    """Server → Client."""

    model_config = ConfigDict(extra="allow")

    action: str


class WsOutbound(BaseModel):
    """Client → Server."""

    model_config = ConfigDict(extra="allow")

    action: str


def parse_inbound(raw: str | bytes) -> InboundEvent:
    """Decode one frame. Raise MalformedPayload if it does not have the expected shape."""
    try:
        envelope = WsInbound.model_validate_json(raw)
    except ValidationError as exc:
        raise MalformedPayload(f"invalid frame: {exc.error_count()} error(s)") from exc

    extra = envelope.model_extra or {}
    if envelope.action != NEW_MESSAGE:
        return OtherEvent(action=envelope.action, payload=extra)

    try:
        wire = WireMessage.model_validate(extra.get("message"))
    except ValidationError as exc:
        raise MalformedPayload(f"invalid {NEW_MESSAGE} payload: {exc.error_count()} error(s)") from exc
    return NewMessage(message=wire.to_domain())


def encode_outbound(payload: dict[str, Any]) -> str:
    try:
        return WsOutbound.model_validate(payload).model_dump_json()
    except ValidationError as exc:
        raise ValueError("outbound frame needs an 'action' field") from exc


def encode_message_event(message: Message) -> str:
    """Frame a message the way the server pushes it. Used by test servers and tooling."""
    body: dict[str, Any] = {
        "id": message.id,
        "content": message.content,
        "timestamp": message.timestamp,
    }
    if message.scope.is_direct:
        body["sender_id"] = message.sender_id
        body["conversation_id"] = message.scope.conversation_id
    else:
        body["from"] = message.sender_id
    return json.dumps({"action": NEW_MESSAGE, "message": body})
