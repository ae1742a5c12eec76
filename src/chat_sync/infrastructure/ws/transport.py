"""aiohttp-backed push connection."""
from __future__ import annotations

import logging
from typing import AsyncIterator

import aiohttp

from chat_sync.application.exceptions import ConnectionFailure

logger = logging.getLogger(__name__)


class AiohttpConnection:
    """Implements application.ports.transport.DuplexConnection."""

    def __init__(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        self._ws = ws

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                yield msg.data.decode("utf-8", errors="replace")
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise ConnectionFailure(f"websocket error: {self._ws.exception()}")
            elif msg.type in (
                aiohttp.WSMsgType.CLOSE,
                aiohttp.WSMsgType.CLOSING,
                aiohttp.WSMsgType.CLOSED,
            ):
                logger.debug("WS closed by peer (code=%s)", self._ws.close_code)
                return

    async def send_text(self, data: str) -> None:
        await self._ws.send_str(data)

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()


class AiohttpConnector:
    """Opens websocket connections on a shared ClientSession.

    Implements application.ports.transport.Connector.
    """

    def __init__(self, *, heartbeat: float | None = 30.0, timeout: float = 10.0) -> None:
        self._heartbeat = heartbeat
        self._timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    async def __call__(self, url: str) -> AiohttpConnection:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self._timeout),
            )
        try:
            ws = await self._session.ws_connect(url, heartbeat=self._heartbeat)
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise ConnectionFailure(f"cannot open {_redact(url)}: {exc}") from exc
        return AiohttpConnection(ws)

    async def aclose(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def _redact(url: str) -> str:
    """Drop the query string, which carries the credential."""
    return url.split("?", 1)[0]
