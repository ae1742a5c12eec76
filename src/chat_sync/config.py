from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    API_BASE_URL: str = "http://localhost:8000/api/v1/chat"
    WS_URL: str = "ws://localhost:8000/ws/chat"

    AUTH_TOKEN: str | None = None
    USER_ID: str | None = None
    TOKEN_EXPIRY_LEEWAY_SECONDS: int = 30

    RECONNECT_INTERVAL_MS: int = 3000
    MAX_RECONNECT_ATTEMPTS: int = 10
    AUTO_RECONNECT: bool = True
    WS_HEARTBEAT_SECONDS: int = 30

    HTTP_TIMEOUT_SECONDS: float = 10.0

    SCROLL_BOTTOM_THRESHOLD: int = 50
    MAX_MESSAGE_LENGTH: int = 5000
    REFETCH_AFTER_SEND: bool = True

    LOG_LEVEL: str = "INFO"

    @property
    def reconnect_interval(self) -> float:
        return self.RECONNECT_INTERVAL_MS / 1000

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
