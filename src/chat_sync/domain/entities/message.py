from __future__ import annotations

from dataclasses import dataclass, replace

from chat_sync.domain.value_objects.enums import Provenance
from chat_sync.domain.value_objects.scope import Scope


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    scope: Scope
    sender_id: str
    content: str
    timestamp: int  # ms since epoch
    provenance: Provenance = Provenance.CONFIRMED

    @property
    def is_optimistic(self) -> bool:
        return self.provenance == Provenance.OPTIMISTIC

    def confirmed_as(self, message_id: str, timestamp: int) -> Message:
        """Return the server-confirmed version of an optimistic message."""
        return replace(
            self,
            id=message_id,
            timestamp=timestamp,
            provenance=Provenance.CONFIRMED,
        )
