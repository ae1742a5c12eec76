from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import ProfileRecord
from chat_sync.domain.value_objects.scope import Scope

UNKNOWN_SENDER = "Unknown User"


class ChangeKind(StrEnum):
    HISTORY = "history"
    PUSH = "push"
    OPTIMISTIC = "optimistic"
    CONFIRMED = "confirmed"
    ROLLED_BACK = "rolled_back"
    PROFILES = "profiles"
    RESET = "reset"


@dataclass(frozen=True, slots=True)
class TimelineChange:
    """Emitted by the reconciler after every mutation of a scope's sequence."""

    scope: Scope
    kind: ChangeKind
    inserted: tuple[Message, ...] = ()
    removed_ids: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class TimelineEntry:
    """A message as the presentation layer sees it."""

    message: Message
    sender: ProfileRecord | None
    is_outgoing: bool

    @property
    def sender_name(self) -> str:
        if self.sender is None:
            return UNKNOWN_SENDER
        return self.sender.display_name
