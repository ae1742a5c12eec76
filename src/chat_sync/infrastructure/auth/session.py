from __future__ import annotations

import logging
import time

import jwt

from chat_sync.application.exceptions import AuthFailure
from chat_sync.config import Settings

logger = logging.getLogger(__name__)


class EnvSessionProvider:
    """Session provider backed by configuration.

    The access token is a JWT issued elsewhere. It is decoded without
    signature verification (the server verifies it) only to check expiry
    and to read the user id from ``sub`` when USER_ID is not configured.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings

    async def get_connection_target(self) -> str:
        if not self._settings.WS_URL:
            raise AuthFailure("WS_URL is not configured")
        return self._settings.WS_URL

    async def get_short_lived_credential(self) -> str | None:
        token = self._settings.AUTH_TOKEN
        if not token:
            return None
        claims = self._claims(token)
        exp = claims.get("exp")
        if exp is not None and time.time() >= float(exp) - self._settings.TOKEN_EXPIRY_LEEWAY_SECONDS:
            raise AuthFailure("session expired")
        return token

    async def get_user_id(self) -> str:
        if self._settings.USER_ID:
            return self._settings.USER_ID
        token = self._settings.AUTH_TOKEN
        if token:
            sub = self._claims(token).get("sub")
            if sub:
                return str(sub)
        raise AuthFailure("no user id: set USER_ID or an AUTH_TOKEN with a 'sub' claim")

    @staticmethod
    def _claims(token: str) -> dict:
        try:
            return jwt.decode(token, options={"verify_signature": False, "verify_exp": False})
        except jwt.InvalidTokenError as exc:
            logger.debug("Unreadable access token", exc_info=True)
            raise AuthFailure(f"invalid access token: {exc}") from exc
