"""Client-side push connection manager."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable
from urllib.parse import urlencode

from chat_sync.application.dto.events import InboundEvent
from chat_sync.application.exceptions import AuthFailure, ConnectionFailure, MalformedPayload
from chat_sync.application.ports.session import SessionProvider
from chat_sync.application.ports.transport import Connector, DuplexConnection
from chat_sync.application.reactive import Signal
from chat_sync.domain.value_objects.enums import ConnectionState
from chat_sync.infrastructure.ws.protocol import encode_outbound, parse_inbound

logger = logging.getLogger(__name__)

OnOpen = Callable[[], None]
OnMessage = Callable[[InboundEvent], None]
OnClose = Callable[[], None]
OnError = Callable[[Exception], None]


@dataclass(slots=True)
class ReconnectState:
    attempt_count: int = 0
    is_intentional_close: bool = False


@dataclass(frozen=True, slots=True)
class ConnectionHandlers:
    on_open: OnOpen | None = None
    on_message: OnMessage | None = None
    on_close: OnClose | None = None
    on_error: OnError | None = None


class ConnectionManager:
    """Owns the single push connection of the client.

    Handlers live in one replaceable slot that is read at dispatch time, so
    the consumer can swap them without the connection being recreated.
    Every connect attempt gets a generation number; anything that finishes
    after a newer connect or a disconnect is discarded.
    """

    def __init__(
        self,
        session: SessionProvider,
        connector: Connector,
        *,
        reconnect_interval: float = 3.0,
        max_reconnect_attempts: int = 10,
        auto_reconnect: bool = True,
    ) -> None:
        self._session = session
        self._connector = connector
        self._reconnect_interval = reconnect_interval
        self._max_reconnect_attempts = max_reconnect_attempts
        self._auto_reconnect = auto_reconnect

        self._state = ConnectionState.IDLE
        self._reconnect = ReconnectState()
        self._handlers = ConnectionHandlers()
        self._conn: DuplexConnection | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._retry_task: asyncio.Task[None] | None = None
        self._generation = 0

        self.is_connected: Signal[bool] = Signal(False)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt_count(self) -> int:
        return self._reconnect.attempt_count

    @property
    def retry_pending(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    def set_handlers(
        self,
        *,
        on_open: OnOpen | None = None,
        on_message: OnMessage | None = None,
        on_close: OnClose | None = None,
        on_error: OnError | None = None,
    ) -> None:
        self._handlers = ConnectionHandlers(
            on_open=on_open,
            on_message=on_message,
            on_close=on_close,
            on_error=on_error,
        )

    async def connect(self) -> None:
        self._cancel_retry()
        await self._drop_connection()
        self._reconnect.is_intentional_close = False
        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)

        try:
            target = await self._session.get_connection_target()
            token = await self._session.get_short_lived_credential()
        except Exception as exc:
            failure = exc if isinstance(exc, AuthFailure) else AuthFailure(str(exc))
            self._connect_failed(generation, failure)
            return
        if generation != self._generation:
            return

        try:
            conn = await self._connector(_with_token(target, token))
        except Exception as exc:
            failure = exc if isinstance(exc, ConnectionFailure) else ConnectionFailure(str(exc))
            self._connect_failed(generation, failure)
            return
        if generation != self._generation:
            await _close_quietly(conn)
            return

        self._conn = conn
        self._reconnect.attempt_count = 0
        self._reconnect.is_intentional_close = False
        self._set_state(ConnectionState.OPEN)
        self._reader_task = asyncio.create_task(
            self._read_loop(conn, generation), name="ws-reader",
        )
        logger.info("WS connected")
        self._dispatch("on_open")

    async def disconnect(self) -> None:
        """Close on purpose. Idempotent; no reconnect follows."""
        self._reconnect.is_intentional_close = True
        self._generation += 1
        self._cancel_retry()
        had_connection = self._conn is not None
        if had_connection:
            self._set_state(ConnectionState.CLOSING)
        await self._drop_connection()
        self._set_state(ConnectionState.CLOSED)
        if had_connection:
            logger.info("WS disconnected")

    async def reconnect(self) -> None:
        """Start over with a fresh attempt budget."""
        self._reconnect = ReconnectState()
        await self.connect()

    async def send(self, payload: dict[str, Any]) -> bool:
        """Fire-and-forget. Returns False (and sends nothing) unless the connection is open."""
        conn = self._conn
        if self._state != ConnectionState.OPEN or conn is None:
            logger.warning("WS cannot send, not connected")
            return False
        raw = encode_outbound(payload)
        try:
            await conn.send_text(raw)
        except Exception as exc:
            logger.warning("WS send failed: %s", exc)
            self._dispatch("on_error", exc)
            return False
        return True

    async def _read_loop(self, conn: DuplexConnection, generation: int) -> None:
        error: Exception | None = None
        try:
            async for raw in conn:
                self._handle_frame(raw)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            error = exc

        if generation != self._generation:
            return
        self._conn = None
        self._reader_task = None
        self._set_state(ConnectionState.CLOSED)
        await _close_quietly(conn)
        if error is not None:
            logger.warning("WS connection lost: %s", error)
            self._dispatch("on_error", error)
        else:
            logger.info("WS closed by server")
        self._schedule_retry()
        self._dispatch("on_close")

    def _handle_frame(self, raw: str) -> None:
        try:
            event = parse_inbound(raw)
        except MalformedPayload as exc:
            logger.warning("WS dropping malformed frame: %s", exc.detail)
            return
        self._dispatch("on_message", event)

    def _connect_failed(self, generation: int, exc: Exception) -> None:
        if generation != self._generation:
            return
        logger.warning("WS connect failed: %s", exc)
        self._set_state(ConnectionState.CLOSED)
        self._dispatch("on_error", exc)
        self._schedule_retry()

    def _schedule_retry(self) -> None:
        if not self._auto_reconnect or self._reconnect.is_intentional_close:
            return
        if self._reconnect.attempt_count >= self._max_reconnect_attempts:
            logger.warning(
                "WS giving up after %d reconnect attempts", self._reconnect.attempt_count,
            )
            return
        self._reconnect.attempt_count += 1
        logger.info(
            "WS reconnecting in %.1fs (attempt %d/%d)",
            self._reconnect_interval,
            self._reconnect.attempt_count,
            self._max_reconnect_attempts,
        )
        self._retry_task = asyncio.create_task(self._retry_later(), name="ws-reconnect")

    async def _retry_later(self) -> None:
        await asyncio.sleep(self._reconnect_interval)
        self._retry_task = None
        await self.connect()

    def _cancel_retry(self) -> None:
        task, self._retry_task = self._retry_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    async def _drop_connection(self) -> None:
        """Tear down the current connection without triggering the reconnect path."""
        task, self._reader_task = self._reader_task, None
        conn, self._conn = self._conn, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if conn is not None:
            await _close_quietly(conn)

    def _set_state(self, state: ConnectionState) -> None:
        self._state = state
        self.is_connected.set(state == ConnectionState.OPEN)

    def _dispatch(self, name: str, *args: Any) -> None:
        handler = getattr(self._handlers, name)
        if handler is None:
            return
        try:
            handler(*args)
        except Exception:
            logger.exception("WS %s handler failed", name)


def _with_token(target: str, token: str | None) -> str:
    if not token:
        return target
    sep = "&" if "?" in target else "?"
    return f"{target}{sep}{urlencode({'token': token})}"


async def _close_quietly(conn: DuplexConnection) -> None:
    try:
        await conn.close()
    except Exception:
        logger.debug("WS close failed", exc_info=True)
