from __future__ import annotations

from typing import Protocol


class ConversationService(Protocol):
    async def get_or_create_direct(self, peer_id: str) -> str:
        """Return the id of the direct conversation with ``peer_id``."""
        ...
