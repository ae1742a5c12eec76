"""Merges history, push events and optimistic sends into one ordered timeline per scope."""
from __future__ import annotations

import asyncio
import bisect
import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable

from chat_sync.application.dto.timeline import ChangeKind, TimelineChange
from chat_sync.application.exceptions import FetchFailure, ScopeNotOpenError, SendFailure
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.messages import HistoryService
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import Provenance
from chat_sync.domain.value_objects.ids import new_local_id
from chat_sync.domain.value_objects.scope import Scope
from chat_sync.services.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)

ChangeListener = Callable[[TimelineChange], None]


@dataclass(order=True, slots=True)
class _Entry:
    timestamp: int
    seq: int
    message: Message = field(compare=False)


class _Timeline:
    """Entries sorted by (timestamp, insertion sequence), indexed by id."""

    def __init__(self) -> None:
        self.entries: list[_Entry] = []
        self.by_id: dict[str, _Entry] = {}
        self._seq = 0

    def __contains__(self, message_id: str) -> bool:
        return message_id in self.by_id

    def insert(self, message: Message) -> None:
        self._seq += 1
        entry = _Entry(message.timestamp, self._seq, message)
        bisect.insort(self.entries, entry)
        self.by_id[message.id] = entry

    def remove(self, message_id: str) -> _Entry | None:
        entry = self.by_id.pop(message_id, None)
        if entry is not None:
            self.entries.remove(entry)
        return entry

    def messages(self) -> tuple[Message, ...]:
        return tuple(e.message for e in self.entries)


@dataclass(frozen=True, slots=True)
class _PendingSend:
    scope: Scope
    content: str


class MessageReconciler:
    """Single owner of every tracked scope's message sequence.

    A message id materializes at most once per scope no matter how many
    times it arrives. Optimistic entries use a local id and the local clock
    until ``confirm_send`` either rewrites them to the server identity or
    removes them. Scopes nobody tracks are not buffered.
    """

    def __init__(
        self,
        history: HistoryService,
        profiles: ProfileResolver,
        *,
        viewer_id: str,
        clock: Clock | None = None,
    ) -> None:
        self._history = history
        self._profiles = profiles
        self._viewer_id = viewer_id
        self._clock = clock or SystemClock()
        self._timelines: dict[Scope, _Timeline] = {}
        self._generations: dict[Scope, int] = {}
        self._pending: dict[str, _PendingSend] = {}
        self._listeners: list[ChangeListener] = []
        self._enrich_tasks: set[asyncio.Task[None]] = set()

    @property
    def viewer_id(self) -> str:
        return self._viewer_id

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # -- scope tracking -------------------------------------------------

    def open_scope(self, scope: Scope) -> None:
        if scope not in self._timelines:
            self._timelines[scope] = _Timeline()
            self._generations[scope] = self._generations.get(scope, 0) + 1
            logger.debug("Tracking scope %s", scope)

    def close_scope(self, scope: Scope) -> None:
        if self._timelines.pop(scope, None) is None:
            return
        # Late history results for this scope must not land anywhere.
        self._generations[scope] = self._generations.get(scope, 0) + 1
        for local_id in [lid for lid, p in self._pending.items() if p.scope == scope]:
            del self._pending[local_id]
        logger.debug("Stopped tracking scope %s", scope)
        self._emit(TimelineChange(scope=scope, kind=ChangeKind.RESET))

    def is_tracking(self, scope: Scope) -> bool:
        return scope in self._timelines

    def messages(self, scope: Scope) -> tuple[Message, ...]:
        timeline = self._timelines.get(scope)
        if timeline is None:
            return ()
        return timeline.messages()

    # -- ingestion ------------------------------------------------------

    async def load_history(self, scope: Scope) -> tuple[Message, ...]:
        """Fetch the scope's history and merge it in.

        The scope must be open. Raises FetchFailure; whatever is already
        visible stays visible. A scope nobody tracks is not fetched, and
        results that arrive after the scope was closed (or re-opened) are
        discarded; both return an empty tuple.
        """
        if scope not in self._timelines:
            logger.debug("Not fetching history for untracked scope %s", scope)
            return ()
        generation = self._generations[scope]
        try:
            fetched = await self._history.fetch_messages(scope)
        except FetchFailure:
            raise
        except Exception as exc:
            raise FetchFailure(f"history fetch failed: {exc}") from exc

        timeline = self._timelines.get(scope)
        if timeline is None or self._generations.get(scope) != generation:
            logger.debug("Discarding stale history for %s", scope)
            return ()

        inserted = []
        for message in fetched:
            if message.scope != scope:
                logger.debug("History for %s contained message %s of %s", scope, message.id, message.scope)
                continue
            if self._insert(timeline, message):
                inserted.append(message)
        logger.debug("History for %s: %d fetched, %d new", scope, len(fetched), len(inserted))
        if inserted:
            self._emit(TimelineChange(scope=scope, kind=ChangeKind.HISTORY, inserted=tuple(inserted)))
            self._enrich(scope, inserted)
        return timeline.messages()

    def ingest_push(self, message: Message) -> bool:
        """Fold one pushed message into its scope. Returns True if it became visible."""
        timeline = self._timelines.get(message.scope)
        if timeline is None:
            logger.debug("Dropping push %s for untracked scope %s", message.id, message.scope)
            return False
        if not self._insert(timeline, message):
            return False
        self._emit(TimelineChange(scope=message.scope, kind=ChangeKind.PUSH, inserted=(message,)))
        self._enrich(message.scope, [message])
        return True

    # -- optimistic sends -----------------------------------------------

    def send_optimistic(self, scope: Scope, content: str) -> str:
        """Show ``content`` immediately under a fresh local id and return that id."""
        timeline = self._timelines.get(scope)
        if timeline is None:
            raise ScopeNotOpenError(f"scope {scope} is not open")
        local_id = new_local_id()
        message = Message(
            id=local_id,
            scope=scope,
            sender_id=self._viewer_id,
            content=content,
            timestamp=self._clock.now_ms(),
            provenance=Provenance.OPTIMISTIC,
        )
        timeline.insert(message)
        self._pending[local_id] = _PendingSend(scope=scope, content=content)
        self._emit(TimelineChange(scope=scope, kind=ChangeKind.OPTIMISTIC, inserted=(message,)))
        self._enrich(scope, [message])
        return local_id

    def confirm_send(self, local_id: str, outcome: Message | SendFailure) -> Message | None:
        """Settle an optimistic entry.

        On failure the entry with exactly ``local_id`` is removed. On success
        it becomes the confirmed message, unless that message already
        arrived by push, in which case the optimistic entry is dropped.
        Returns the visible confirmed message, or None after a rollback.
        """
        pending = self._pending.pop(local_id, None)
        if pending is None:
            logger.debug("No pending send %s", local_id)
            return None
        timeline = self._timelines.get(pending.scope)
        if timeline is None:
            return None

        if isinstance(outcome, SendFailure):
            if timeline.remove(local_id) is not None:
                logger.info("Rolled back send %s: %s", local_id, outcome.detail)
                self._emit(TimelineChange(
                    scope=pending.scope, kind=ChangeKind.ROLLED_BACK, removed_ids=(local_id,),
                ))
            return None

        old = timeline.remove(local_id)
        if outcome.id in timeline:
            self._emit(TimelineChange(
                scope=pending.scope, kind=ChangeKind.CONFIRMED, removed_ids=(local_id,),
            ))
            return timeline.by_id[outcome.id].message

        base = old.message if old is not None else outcome
        confirmed = base.confirmed_as(outcome.id, outcome.timestamp)
        timeline.insert(confirmed)
        self._emit(TimelineChange(
            scope=pending.scope,
            kind=ChangeKind.CONFIRMED,
            inserted=(confirmed,),
            removed_ids=(local_id,),
        ))
        self._enrich(pending.scope, [confirmed])
        return confirmed

    def pending_content(self, local_id: str) -> str | None:
        pending = self._pending.get(local_id)
        return pending.content if pending is not None else None

    # -- internals ------------------------------------------------------

    def _insert(self, timeline: _Timeline, message: Message) -> bool:
        if message.id in timeline:
            return False
        timeline.insert(message)
        return True

    def _emit(self, change: TimelineChange) -> None:
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception("Timeline listener failed")

    def _enrich(self, scope: Scope, messages: Iterable[Message]) -> None:
        sender_ids = {m.sender_id for m in messages if not self._profiles.is_known(m.sender_id)}
        if not sender_ids:
            return
        task = asyncio.create_task(self._resolve_senders(scope, sender_ids), name="profile-enrich")
        self._enrich_tasks.add(task)
        task.add_done_callback(self._enrich_tasks.discard)

    async def _resolve_senders(self, scope: Scope, sender_ids: set[str]) -> None:
        try:
            resolved = await self._profiles.resolve(sender_ids)
        except FetchFailure as exc:
            logger.warning("Could not resolve %d sender profile(s): %s", len(sender_ids), exc.detail)
            return
        if resolved and scope in self._timelines:
            self._emit(TimelineChange(scope=scope, kind=ChangeKind.PROFILES))

    async def aclose(self) -> None:
        for task in list(self._enrich_tasks):
            task.cancel()
        if self._enrich_tasks:
            await asyncio.gather(*self._enrich_tasks, return_exceptions=True)
