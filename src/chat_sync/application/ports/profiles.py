from __future__ import annotations

from typing import Protocol, Sequence

from chat_sync.domain.entities.profile import ProfileRecord


class ProfileFetchService(Protocol):
    async def fetch_profiles(self, user_ids: Sequence[str]) -> list[ProfileRecord]:
        """Batched lookup. Unknown ids are simply absent from the result."""
        ...
