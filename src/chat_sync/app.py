"""Client facade: wires the connection, reconciler, profile resolver and scroll tracker together."""
from __future__ import annotations

import asyncio
import logging
from types import TracebackType
from typing import Any, Awaitable, Callable, Coroutine

from chat_sync.application.dto.events import InboundEvent, NewMessage
from chat_sync.application.dto.scroll import ScrollState
from chat_sync.application.dto.timeline import ChangeKind, TimelineChange, TimelineEntry
from chat_sync.application.exceptions import FetchFailure, ScopeNotOpenError, SendFailure
from chat_sync.application.ports.conversations import ConversationService
from chat_sync.application.ports.messages import ReadReceiptService, SendService
from chat_sync.application.reactive import Signal
from chat_sync.config import Settings, settings
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.scope import Scope
from chat_sync.infrastructure.auth.session import EnvSessionProvider
from chat_sync.infrastructure.http.client import ApiClient
from chat_sync.infrastructure.ws.manager import ConnectionManager
from chat_sync.infrastructure.ws.transport import AiohttpConnector
from chat_sync.services.message_reconciler import MessageReconciler
from chat_sync.services.profile_resolver import ProfileResolver
from chat_sync.services.scroll_tracker import ScrollPositionTracker

logger = logging.getLogger(__name__)

_SCROLL_KINDS = (ChangeKind.HISTORY, ChangeKind.PUSH)


class ChatSyncClient:
    """What the presentation layer talks to.

    Reactive values: ``timeline`` (entries of the open scope), ``connected``,
    ``scroll`` and ``error`` (last fetch/send failure, None once something
    succeeds again). One scope is open at a time.
    """

    def __init__(
        self,
        *,
        connection: ConnectionManager,
        reconciler: MessageReconciler,
        profiles: ProfileResolver,
        tracker: ScrollPositionTracker,
        sender: SendService,
        conversations: ConversationService | None = None,
        read_receipts: ReadReceiptService | None = None,
        max_message_length: int = 5000,
        refetch_after_send: bool = True,
        closers: list[Callable[[], Awaitable[None]]] | None = None,
    ) -> None:
        self._connection = connection
        self._reconciler = reconciler
        self._profiles = profiles
        self._tracker = tracker
        self._sender = sender
        self._conversations = conversations
        self._read_receipts = read_receipts
        self._max_message_length = max_message_length
        self._refetch_after_send = refetch_after_send
        self._closers = closers or []

        self._scope: Scope | None = None
        self._opened_before = False
        self._background: set[asyncio.Task[Any]] = set()
        self._unsubscribe: Callable[[], None] | None = None

        self.timeline: Signal[tuple[TimelineEntry, ...]] = Signal(())
        self.error: Signal[str | None] = Signal(None)

    @property
    def connected(self) -> Signal[bool]:
        return self._connection.is_connected

    @property
    def scroll(self) -> Signal[ScrollState]:
        return self._tracker.state

    @property
    def scope(self) -> Scope | None:
        return self._scope

    @property
    def viewer_id(self) -> str:
        return self._reconciler.viewer_id

    # -- lifecycle ------------------------------------------------------

    async def start(self) -> None:
        self._unsubscribe = self._reconciler.subscribe(self._on_change)
        self._connection.set_handlers(
            on_open=self._on_open,
            on_message=self._on_event,
            on_close=self._on_close,
            on_error=self._on_error,
        )
        await self._connection.connect()

    async def stop(self) -> None:
        await self._connection.disconnect()
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self._reconciler.aclose()
        await self._profiles.aclose()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for close in self._closers:
            await close()

    async def __aenter__(self) -> ChatSyncClient:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    # -- scopes ---------------------------------------------------------

    async def open_scope(self, scope: Scope) -> tuple[TimelineEntry, ...]:
        """Switch to ``scope`` and load its history. Raises FetchFailure."""
        previous = self._scope
        if previous is not None and previous != scope:
            self._reconciler.close_scope(previous)
        self._scope = scope
        self._tracker.reset()
        self._reconciler.open_scope(scope)
        self._publish()

        try:
            await self._reconciler.load_history(scope)
        except FetchFailure as exc:
            self.error.set(exc.detail)
            raise
        self.error.set(None)

        if scope.is_direct and scope.conversation_id:
            self._spawn(self._mark_read(scope.conversation_id))
        return self.timeline.value

    async def open_direct(self, peer_id: str) -> Scope:
        """Open (creating if needed) the direct conversation with ``peer_id``."""
        if self._conversations is None:
            raise ScopeNotOpenError("direct conversations are not available")
        try:
            conversation_id = await self._conversations.get_or_create_direct(peer_id)
        except FetchFailure as exc:
            self.error.set(exc.detail)
            raise
        try:
            await self._profiles.resolve({peer_id, self.viewer_id}, refresh=True)
        except FetchFailure as exc:
            logger.warning("Failed to load profiles: %s", exc.detail)
        scope = Scope.direct(conversation_id)
        await self.open_scope(scope)
        return scope

    def close_scope(self, scope: Scope | None = None) -> None:
        scope = scope or self._scope
        if scope is None:
            return
        self._reconciler.close_scope(scope)
        if scope == self._scope:
            self._scope = None
            self._tracker.reset()
            self._publish()

    # -- egress ---------------------------------------------------------

    async def send(self, content: str) -> Message:
        """Send to the open scope.

        The message is visible at once. On failure it disappears again and
        SendFailure is raised with the original text in ``content``.
        """
        scope = self._scope
        if scope is None:
            raise ScopeNotOpenError("no scope is open")
        text = content.strip()
        if not text:
            raise SendFailure("Message content cannot be empty", content=content)
        if len(text) > self._max_message_length:
            raise SendFailure(
                f"Message content too long (max {self._max_message_length} characters)",
                content=content,
            )

        local_id = self._reconciler.send_optimistic(scope, text)
        try:
            confirmed = await self._sender.send_message(scope, text)
        except asyncio.CancelledError:
            self._reconciler.confirm_send(local_id, SendFailure("send cancelled", content=content))
            raise
        except Exception as exc:
            failure = exc if isinstance(exc, SendFailure) else SendFailure(str(exc))
            failure.content = content
            self._reconciler.confirm_send(local_id, failure)
            self.error.set(failure.detail)
            if failure is exc:
                raise
            raise failure from exc

        visible = self._reconciler.confirm_send(local_id, confirmed) or confirmed
        self.error.set(None)
        if self._refetch_after_send:
            self._spawn(self._refresh(scope))
        return visible

    async def retry_connection(self) -> None:
        await self._connection.reconnect()

    # -- viewport -------------------------------------------------------

    def report_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> None:
        self._tracker.report_scroll(scroll_top, scroll_height, viewport_height)

    def acknowledge_bottom(self) -> None:
        self._tracker.scroll_to_bottom_acknowledged()

    def set_scroll_handler(self, handler: Callable[[], None] | None) -> None:
        self._tracker.set_scroll_handler(handler)

    # -- callbacks ------------------------------------------------------

    def _on_open(self) -> None:
        if self._opened_before and self._scope is not None:
            # Pushes sent while we were away are only reachable through history.
            self._spawn(self._refresh(self._scope))
        self._opened_before = True

    def _on_close(self) -> None:
        logger.debug("Push connection closed")

    def _on_error(self, exc: Exception) -> None:
        logger.debug("Push connection error: %s", exc)

    def _on_event(self, event: InboundEvent) -> None:
        if not isinstance(event, NewMessage):
            logger.debug("Ignoring %s event", event.action)
            return
        message = event.message
        accepted = self._reconciler.ingest_push(message)
        if (
            accepted
            and message.scope == self._scope
            and message.scope.is_direct
            and message.scope.conversation_id
            and message.sender_id != self.viewer_id
        ):
            self._spawn(self._mark_read(message.scope.conversation_id))

    def _on_change(self, change: TimelineChange) -> None:
        if change.scope != self._scope:
            return
        if change.kind == ChangeKind.OPTIMISTIC:
            self._tracker.notify_own_message()
        elif change.kind in _SCROLL_KINDS and change.inserted:
            others = sum(1 for m in change.inserted if m.sender_id != self.viewer_id)
            if others:
                self._tracker.notify_new_messages(others)
            if others < len(change.inserted):
                self._tracker.notify_own_message()
        self._publish()

    # -- internals ------------------------------------------------------

    def _publish(self) -> None:
        if self._scope is None:
            self.timeline.set(())
            return
        viewer = self.viewer_id
        self.timeline.set(tuple(
            TimelineEntry(
                message=m,
                sender=self._profiles.cached(m.sender_id),
                is_outgoing=m.sender_id == viewer,
            )
            for m in self._reconciler.messages(self._scope)
        ))

    async def _refresh(self, scope: Scope) -> None:
        if scope != self._scope:
            logger.debug("Skipping follow-up fetch for %s, no longer open", scope)
            return
        try:
            await self._reconciler.load_history(scope)
        except FetchFailure as exc:
            logger.warning("Follow-up fetch for %s failed: %s", scope, exc.detail)
            self.error.set(exc.detail)

    async def _mark_read(self, conversation_id: str) -> None:
        if self._read_receipts is None:
            return
        try:
            await self._read_receipts.mark_read(conversation_id)
        except Exception:
            logger.exception("mark_read failed")

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)


async def create_client(config: Settings | None = None) -> ChatSyncClient:
    """Build a client talking to the configured backend over aiohttp."""
    config = config or settings
    session = EnvSessionProvider(config)
    viewer_id = await session.get_user_id()

    api = ApiClient(config.API_BASE_URL, session, timeout=config.HTTP_TIMEOUT_SECONDS)
    connector = AiohttpConnector(
        heartbeat=config.WS_HEARTBEAT_SECONDS,
        timeout=config.HTTP_TIMEOUT_SECONDS,
    )
    connection = ConnectionManager(
        session,
        connector,
        reconnect_interval=config.reconnect_interval,
        max_reconnect_attempts=config.MAX_RECONNECT_ATTEMPTS,
        auto_reconnect=config.AUTO_RECONNECT,
    )
    profiles = ProfileResolver(api)
    return ChatSyncClient(
        connection=connection,
        reconciler=MessageReconciler(api, profiles, viewer_id=viewer_id),
        profiles=profiles,
        tracker=ScrollPositionTracker(bottom_threshold=config.SCROLL_BOTTOM_THRESHOLD),
        sender=api,
        conversations=api,
        read_receipts=api,
        max_message_length=config.MAX_MESSAGE_LENGTH,
        refetch_after_send=config.REFETCH_AFTER_SEND,
        closers=[connector.aclose, api.aclose],
    )
