from __future__ import annotations

import uuid

LOCAL_ID_PREFIX = "local-"


def new_local_id() -> str:
    """Temporary id for a message that the server has not acknowledged yet."""
    return f"{LOCAL_ID_PREFIX}{uuid.uuid4().hex}"
