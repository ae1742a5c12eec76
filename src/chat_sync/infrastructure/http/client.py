"""aiohttp REST client for the chat backend."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Sequence

import aiohttp
from pydantic import BaseModel, ValidationError

from chat_sync.application.exceptions import FetchFailure, SendFailure
from chat_sync.application.ports.session import SessionProvider
from chat_sync.domain.entities.message import Message
from chat_sync.domain.entities.profile import ProfileRecord
from chat_sync.domain.value_objects.scope import Scope
from chat_sync.infrastructure.http.schemas import (
    ConversationResultOut,
    DirectConversationIn,
    MessageList,
    ProfileList,
    ProfilesIn,
    ResultOut,
    SendIn,
    SendResultOut,
)

logger = logging.getLogger(__name__)


class ApiClient:
    """Implements the history, send, profile, conversation and read-receipt ports."""

    def __init__(
        self,
        base_url: str,
        session_provider: SessionProvider,
        *,
        timeout: float = 10.0,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session_provider = session_provider
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._http = http
        self._owns_http = http is None

    async def fetch_messages(self, scope: Scope) -> list[Message]:
        data = await self._request("GET", self._messages_path(scope), error=FetchFailure)
        try:
            wire = MessageList.validate_python(data)
        except ValidationError as exc:
            raise FetchFailure(f"invalid message list: {exc.error_count()} error(s)") from exc
        messages = []
        for item in wire:
            message = item.to_domain()
            if message.scope != scope:
                # The global endpoint omits conversation ids; trust the path we asked for.
                message = replace(message, scope=scope)
            messages.append(message)
        return messages

    async def send_message(self, scope: Scope, content: str) -> Message:
        data = await self._request(
            "POST", self._messages_path(scope), body=SendIn(content=content), error=SendFailure,
        )
        try:
            result = SendResultOut.model_validate(data)
        except ValidationError as exc:
            raise SendFailure("invalid send response", content=content) from exc
        if not result.success:
            raise SendFailure(result.error or "Failed to send message", content=content)
        if result.message is None:
            raise SendFailure("server did not return the created message", content=content)
        wire = result.message
        return Message(
            id=wire.id,
            scope=scope,
            sender_id=wire.sender_id,
            content=wire.content,
            timestamp=wire.timestamp,
        )

    async def fetch_profiles(self, user_ids: Sequence[str]) -> list[ProfileRecord]:
        if not user_ids:
            return []
        data = await self._request(
            "POST", "/profiles/batch", body=ProfilesIn(user_ids=list(user_ids)), error=FetchFailure,
        )
        try:
            profiles = ProfileList.validate_python(data)
        except ValidationError as exc:
            raise FetchFailure(f"invalid profile list: {exc.error_count()} error(s)") from exc
        return [p.to_domain() for p in profiles]

    async def get_or_create_direct(self, peer_id: str) -> str:
        data = await self._request(
            "POST",
            "/conversations/direct",
            body=DirectConversationIn(other_user_id=peer_id),
            error=FetchFailure,
        )
        try:
            result = ConversationResultOut.model_validate(data)
        except ValidationError as exc:
            raise FetchFailure("invalid conversation response") from exc
        if not result.success or not result.conversation_id:
            raise FetchFailure(result.error or "Failed to load conversation")
        return result.conversation_id

    async def mark_read(self, conversation_id: str) -> None:
        data = await self._request(
            "POST", f"/conversations/{conversation_id}/read", error=FetchFailure,
        )
        try:
            result = ResultOut.model_validate(data)
        except ValidationError as exc:
            raise FetchFailure("invalid read receipt response") from exc
        if not result.success:
            raise FetchFailure(result.error or "Failed to mark conversation as read")

    async def aclose(self) -> None:
        if self._owns_http and self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    @staticmethod
    def _messages_path(scope: Scope) -> str:
        if scope.is_direct:
            return f"/conversations/{scope.conversation_id}/messages"
        return "/global/messages"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        body: BaseModel | None = None,
        error: type[FetchFailure] | type[SendFailure],
    ) -> Any:
        content = body.content if isinstance(body, SendIn) else None

        def _fail(detail: str) -> FetchFailure | SendFailure:
            exc = error(detail)
            if isinstance(exc, SendFailure):
                exc.content = content
            return exc

        headers = {}
        try:
            token = await self._session_provider.get_short_lived_credential()
        except Exception as exc:
            raise _fail(f"no credential: {exc}") from exc
        if token:
            headers["Authorization"] = f"Bearer {token}"

        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True

        url = f"{self._base_url}{path}"
        try:
            async with self._http.request(
                method,
                url,
                json=body.model_dump() if body is not None else None,
                headers=headers,
            ) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    logger.warning("%s %s -> %d", method, path, resp.status)
                    raise _fail(f"{method} {path} failed with {resp.status}: {text[:200]}")
                return await resp.json()
        except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
            raise _fail(f"{method} {path} failed: {exc}") from exc
