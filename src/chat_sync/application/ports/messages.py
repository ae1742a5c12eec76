from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.scope import Scope


class HistoryService(Protocol):
    async def fetch_messages(self, scope: Scope) -> list[Message]:
        """Return the scope's messages ordered by timestamp. Raise FetchFailure on error."""
        ...


class SendService(Protocol):
    async def send_message(self, scope: Scope, content: str) -> Message:
        """Return the confirmed message. Raise SendFailure if the server rejects it."""
        ...


class ReadReceiptService(Protocol):
    async def mark_read(self, conversation_id: str) -> None: ...
