"""In-process chat backend served by aiohttp for end-to-end tests."""
from __future__ import annotations

import itertools
import json
from typing import Any

import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

API_PREFIX = "/api/v1/chat"
GLOBAL_KEY = "global"


class ChatBackend:
    def __init__(self, viewer_id: str) -> None:
        self.viewer_id = viewer_id
        self.messages: dict[str, list[dict[str, Any]]] = {GLOBAL_KEY: []}
        self.profiles: dict[str, dict[str, Any]] = {}
        self.auth_headers: list[str | None] = []
        self.ws_tokens: list[str | None] = []
        self.read: list[str] = []
        self.read_reply: dict[str, Any] = {"success": True}
        self.profile_requests: list[list[str]] = []
        self.fail_sends: str | None = None
        self.broken = False
        self.sockets: list[web.WebSocketResponse] = []
        self.server: TestServer | None = None
        self._ids = itertools.count(1)
        self._clock = itertools.count(1_700_000_000_000, 1000)

    # -- setup helpers --------------------------------------------------

    def add_message(self, sender_id: str, content: str, conversation_id: str | None = None) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": f"srv-{next(self._ids)}",
            "content": content,
            "timestamp": next(self._clock),
        }
        if conversation_id is None:
            item["from"] = sender_id
            self.messages[GLOBAL_KEY].append(item)
        else:
            item["sender_id"] = sender_id
            item["conversation_id"] = conversation_id
            self.messages.setdefault(conversation_id, []).append(item)
        return item

    def add_profile(self, user_id: str, nickname: str, status: str | None = "online") -> None:
        self.profiles[user_id] = {
            "user_id": user_id,
            "nickname": nickname,
            "avatar_url": None,
            "status": status,
        }

    async def push(self, item: dict[str, Any]) -> None:
        raw = json.dumps({"action": "new_message", "message": item})
        for ws in list(self.sockets):
            await ws.send_str(raw)

    async def drop_sockets(self) -> None:
        for ws in list(self.sockets):
            await ws.close()

    def url(self, path: str) -> str:
        assert self.server is not None
        return str(self.server.make_url(path))

    @property
    def api_url(self) -> str:
        return self.url(API_PREFIX)

    @property
    def ws_url(self) -> str:
        return self.url("/ws").replace("http://", "ws://", 1)

    # -- handlers -------------------------------------------------------

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(f"{API_PREFIX}/global/messages", self._list_messages)
        app.router.add_post(f"{API_PREFIX}/global/messages", self._send_message)
        app.router.add_get(f"{API_PREFIX}/conversations/{{cid}}/messages", self._list_messages)
        app.router.add_post(f"{API_PREFIX}/conversations/{{cid}}/messages", self._send_message)
        app.router.add_post(f"{API_PREFIX}/conversations/{{cid}}/read", self._mark_read)
        app.router.add_post(f"{API_PREFIX}/conversations/direct", self._direct)
        app.router.add_post(f"{API_PREFIX}/profiles/batch", self._profiles)
        app.router.add_get("/ws", self._ws)
        return app

    async def _list_messages(self, request: web.Request) -> web.Response:
        self.auth_headers.append(request.headers.get("Authorization"))
        if self.broken:
            return web.json_response({"detail": "down for maintenance"}, status=503)
        key = request.match_info.get("cid", GLOBAL_KEY)
        return web.json_response(self.messages.get(key, []))

    async def _send_message(self, request: web.Request) -> web.Response:
        self.auth_headers.append(request.headers.get("Authorization"))
        body = await request.json()
        if self.fail_sends:
            return web.json_response({"success": False, "error": self.fail_sends})
        item = self.add_message(self.viewer_id, body["content"], request.match_info.get("cid"))
        await self.push(item)
        return web.json_response({"success": True, "message": item})

    async def _mark_read(self, request: web.Request) -> web.Response:
        self.read.append(request.match_info["cid"])
        return web.json_response(self.read_reply)

    async def _direct(self, request: web.Request) -> web.Response:
        body = await request.json()
        return web.json_response({"success": True, "conversation_id": f"dm-{body['other_user_id']}"})

    async def _profiles(self, request: web.Request) -> web.Response:
        body = await request.json()
        self.profile_requests.append(body["user_ids"])
        return web.json_response([self.profiles[u] for u in body["user_ids"] if u in self.profiles])

    async def _ws(self, request: web.Request) -> web.WebSocketResponse:
        self.ws_tokens.append(request.query.get("token"))
        ws = web.WebSocketResponse()
        await ws.prepare(request)
        self.sockets.append(ws)
        try:
            async for _ in ws:
                pass
        finally:
            self.sockets.remove(ws)
        return ws


@pytest_asyncio.fixture
async def backend():
    backend = ChatBackend(viewer_id="user-self")
    server = TestServer(backend.app())
    await server.start_server()
    backend.server = server
    yield backend
    await backend.drop_sockets()
    await server.close()
