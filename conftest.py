"""Root conftest: applies .env.test before chat_sync.config is imported."""
from __future__ import annotations

import os
from pathlib import Path

ENV_TEST = Path(__file__).resolve().parent / ".env.test"

# Host credentials must never reach the test run.
os.environ.pop("AUTH_TOKEN", None)

if ENV_TEST.exists():
    for raw in ENV_TEST.read_text().splitlines():
        raw = raw.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        name, value = (part.strip() for part in raw.split("=", 1))
        os.environ.setdefault(name, value)
