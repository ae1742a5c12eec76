"""Sender id → profile lookup with batching, in-flight sharing and a process-lifetime cache."""
from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from chat_sync.application.exceptions import FetchFailure
from chat_sync.application.ports.profiles import ProfileFetchService
from chat_sync.domain.entities.profile import ProfileRecord

logger = logging.getLogger(__name__)


class ProfileResolver:
    """Resolves user ids to ProfileRecords.

    Ids already cached are answered from memory. Ids another caller is
    already fetching are awaited, not fetched again. Everything else goes
    out in exactly one batched request per call. The cache never expires;
    pass ``refresh=True`` to re-fetch (presence changes often). A refresh
    always starts its own request and supersedes any fetch in flight.
    """

    def __init__(self, fetcher: ProfileFetchService) -> None:
        self._fetcher = fetcher
        self._cache: dict[str, ProfileRecord] = {}
        self._in_flight: dict[str, asyncio.Future[ProfileRecord | None]] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def cached(self, user_id: str) -> ProfileRecord | None:
        return self._cache.get(user_id)

    def is_known(self, user_id: str) -> bool:
        return user_id in self._cache

    async def resolve(
        self,
        user_ids: Iterable[str],
        *,
        refresh: bool = False,
    ) -> dict[str, ProfileRecord]:
        """Return profiles for the requested ids. Ids the server does not know are left out."""
        requested = {uid for uid in user_ids if uid}
        result: dict[str, ProfileRecord] = {}
        waiting: dict[str, asyncio.Future[ProfileRecord | None]] = {}
        missing: list[str] = []

        for uid in sorted(requested):
            if refresh:
                missing.append(uid)
            elif uid in self._in_flight:
                waiting[uid] = self._in_flight[uid]
            elif uid in self._cache:
                result[uid] = self._cache[uid]
            else:
                missing.append(uid)

        if missing:
            waiting.update(self._start_fetch(missing))

        if not waiting:
            return result

        # Shielded: a caller that gets cancelled must not cancel futures others share.
        outcomes = await asyncio.gather(
            *(asyncio.shield(f) for f in waiting.values()),
            return_exceptions=True,
        )
        failure: BaseException | None = None
        for uid, outcome in zip(waiting, outcomes):
            if isinstance(outcome, BaseException):
                failure = failure or outcome
            elif outcome is not None:
                result[uid] = outcome
        if failure is not None:
            if isinstance(failure, FetchFailure):
                raise failure
            raise FetchFailure(f"profile fetch failed: {failure}") from failure
        return result

    def _start_fetch(self, user_ids: list[str]) -> dict[str, asyncio.Future[ProfileRecord | None]]:
        loop = asyncio.get_running_loop()
        futures = {uid: loop.create_future() for uid in user_ids}
        self._in_flight.update(futures)
        task = asyncio.create_task(self._fetch(futures), name="profile-fetch")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return futures

    async def _fetch(self, futures: dict[str, asyncio.Future[ProfileRecord | None]]) -> None:
        ids = list(futures)
        logger.debug("Fetching %d profile(s)", len(ids))
        try:
            records = await self._fetcher.fetch_profiles(ids)
        except asyncio.CancelledError:
            self._finish(futures, error=FetchFailure("profile fetch cancelled"))
            raise
        except Exception as exc:
            logger.warning("Profile fetch failed for %d id(s): %s", len(ids), exc)
            error = exc if isinstance(exc, FetchFailure) else FetchFailure(str(exc))
            self._finish(futures, error=error)
            return

        found: dict[str, ProfileRecord] = {}
        for record in records:
            future = futures.get(record.user_id)
            if future is None:
                continue
            found[record.user_id] = record
            # A refresh started meanwhile owns the cache entry.
            if self._in_flight.get(record.user_id) is future:
                self._cache[record.user_id] = record
        self._finish(futures, found=found)

    def _finish(
        self,
        futures: dict[str, asyncio.Future[ProfileRecord | None]],
        *,
        found: dict[str, ProfileRecord] | None = None,
        error: Exception | None = None,
    ) -> None:
        for uid, future in futures.items():
            if self._in_flight.get(uid) is future:
                del self._in_flight[uid]
            if future.done():
                continue
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result((found or {}).get(uid))

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
