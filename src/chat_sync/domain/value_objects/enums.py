from __future__ import annotations

from enum import StrEnum


class ScopeKind(StrEnum):
    GLOBAL = "global"
    DIRECT = "direct"


class Provenance(StrEnum):
    CONFIRMED = "confirmed"
    OPTIMISTIC = "optimistic"


class ConnectionState(StrEnum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"


class PresenceStatus(StrEnum):
    ONLINE = "online"
    IDLE = "idle"
    DND = "dnd"
    OFFLINE = "offline"
