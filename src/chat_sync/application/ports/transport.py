from __future__ import annotations

from typing import AsyncIterator, Awaitable, Callable, Protocol


class DuplexConnection(Protocol):
    """One open push connection.

    Iterating yields text frames until the peer closes; transport errors
    are raised from the iterator.
    """

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def send_text(self, data: str) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[DuplexConnection]]
