from __future__ import annotations

from typing import Protocol


class SessionProvider(Protocol):
    async def get_connection_target(self) -> str: ...

    async def get_short_lived_credential(self) -> str | None: ...

    async def get_user_id(self) -> str: ...
