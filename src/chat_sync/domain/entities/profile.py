from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import PresenceStatus


@dataclass(frozen=True, slots=True)
class ProfileRecord:
    user_id: str
    display_name: str
    avatar_ref: str | None = None
    presence: PresenceStatus | None = None
