from __future__ import annotations


class SyncError(Exception):
    """Base error of the synchronization core."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class ConnectionFailure(SyncError):
    """Push connection could not be opened or was lost. Retried."""


class AuthFailure(ConnectionFailure):
    """Connection target or credential could not be resolved. Retried like a connection failure."""


class SendFailure(SyncError):
    """A send was rejected or could not reach the server.

    ``content`` carries the text that was not delivered so the caller can
    put it back into its input buffer.
    """

    def __init__(self, detail: str = "", *, content: str | None = None) -> None:
        super().__init__(detail)
        self.content = content


class FetchFailure(SyncError):
    pass


class MalformedPayload(SyncError):
    pass


class ScopeNotOpenError(SyncError):
    pass
