from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from chat_sync.domain.entities.message import Message


@dataclass(frozen=True, slots=True)
class NewMessage:
    message: Message


@dataclass(frozen=True, slots=True)
class OtherEvent:
    action: str
    payload: dict[str, Any]


InboundEvent = NewMessage | OtherEvent
