"""Shared test fixtures and in-memory fakes for the ports."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import AsyncIterator, Callable, Sequence

from chat_sync.application.exceptions import ConnectionFailure
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import ProfileRecord
from chat_sync.domain.value_objects.enums import PresenceStatus
from chat_sync.domain.value_objects.scope import GLOBAL_SCOPE, Scope
from chat_sync.infrastructure.ws.protocol import encode_message_event

VIEWER = "user-self"

_ids = itertools.count(1)


def make_message(
    *,
    message_id: str | None = None,
    scope: Scope = GLOBAL_SCOPE,
    sender_id: str = "user-a",
    content: str = "hello",
    timestamp: int = 1_000,
) -> Message:
    return Message(
        id=message_id or f"msg-{next(_ids)}",
        scope=scope,
        sender_id=sender_id,
        content=content,
        timestamp=timestamp,
    )


def make_profile(user_id: str, name: str | None = None, presence: PresenceStatus | None = None) -> ProfileRecord:
    return ProfileRecord(
        user_id=user_id,
        display_name=name or user_id.title(),
        avatar_ref=None,
        presence=presence,
    )


def frame(message: Message) -> str:
    return encode_message_event(message)


async def settle(rounds: int = 10) -> None:
    """Let already-scheduled callbacks and tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@dataclass
class FakeSession:
    target: str = "ws://chat.test/ws"
    token: str | None = "token-1"
    user_id: str = VIEWER
    failures_left: int = 0

    async def get_connection_target(self) -> str:
        if self.failures_left > 0:
            self.failures_left -= 1
            raise RuntimeError("session not ready")
        return self.target

    async def get_short_lived_credential(self) -> str | None:
        return self.token

    async def get_user_id(self) -> str:
        return self.user_id


class FakeConnection:
    def __init__(self) -> None:
        self._inbox: asyncio.Queue[str | Exception | None] = asyncio.Queue()
        self.sent: list[str] = []
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            item = await self._inbox.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def push(self, raw: str) -> None:
        self._inbox.put_nowait(raw)

    def drop(self) -> None:
        """Server-side close."""
        self._inbox.put_nowait(None)

    def fail(self, exc: Exception) -> None:
        self._inbox.put_nowait(exc)

    async def send_text(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("closed")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)


@dataclass
class FakeConnector:
    fail: bool = False
    urls: list[str] = field(default_factory=list)
    connections: list[FakeConnection] = field(default_factory=list)

    @property
    def calls(self) -> int:
        return len(self.urls)

    @property
    def current(self) -> FakeConnection:
        return self.connections[-1]

    async def __call__(self, url: str) -> FakeConnection:
        self.urls.append(url)
        if self.fail:
            raise ConnectionFailure("connection refused")
        conn = FakeConnection()
        self.connections.append(conn)
        return conn


@dataclass
class FakeHistory:
    messages: dict[Scope, list[Message]] = field(default_factory=dict)
    calls: list[Scope] = field(default_factory=list)
    error: Exception | None = None
    gate: asyncio.Event | None = None

    async def fetch_messages(self, scope: Scope) -> list[Message]:
        self.calls.append(scope)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.messages.get(scope, []))


@dataclass
class FakeSender:
    timestamp: int = 20_000
    error: Exception | None = None
    gate: asyncio.Event | None = None
    sent: list[tuple[Scope, str]] = field(default_factory=list)

    async def send_message(self, scope: Scope, content: str) -> Message:
        self.sent.append((scope, content))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return make_message(
            message_id=f"srv-{len(self.sent)}",
            scope=scope,
            sender_id=VIEWER,
            content=content,
            timestamp=self.timestamp,
        )


@dataclass
class FakeProfiles:
    known: dict[str, ProfileRecord] = field(default_factory=dict)
    calls: list[list[str]] = field(default_factory=list)
    error: Exception | None = None
    gate: asyncio.Event | None = None

    async def fetch_profiles(self, user_ids: Sequence[str]) -> list[ProfileRecord]:
        self.calls.append(list(user_ids))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [self.known[uid] for uid in user_ids if uid in self.known]


@dataclass
class FakeClock:
    now: int = 10_000

    def now_ms(self) -> int:
        return self.now


@dataclass
class FakeReadReceipts:
    marked: list[str] = field(default_factory=list)

    async def mark_read(self, conversation_id: str) -> None:
        self.marked.append(conversation_id)


@dataclass
class FakeConversations:
    ids: dict[str, str] = field(default_factory=dict)

    async def get_or_create_direct(self, peer_id: str) -> str:
        return self.ids.setdefault(peer_id, f"conv-{peer_id}")


