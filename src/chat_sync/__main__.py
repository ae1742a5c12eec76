"""Entrypoint: python -m chat_sync

Joins the global room, prints the timeline and sends every line typed on stdin.
"""
from __future__ import annotations

import asyncio
import logging
import sys
from datetime import datetime
from typing import Callable

from chat_sync.app import ChatSyncClient, create_client
from chat_sync.application.dto.timeline import TimelineEntry
from chat_sync.application.exceptions import FetchFailure, SendFailure
from chat_sync.config import settings
from chat_sync.domain.value_objects.scope import GLOBAL_SCOPE

logger = logging.getLogger("chat_sync")


def _printer() -> Callable[[tuple[TimelineEntry, ...]], None]:
    printed: set[str] = set()

    def _print_new(entries: tuple[TimelineEntry, ...]) -> None:
        for entry in entries:
            msg = entry.message
            if msg.is_optimistic or msg.id in printed:
                continue
            printed.add(msg.id)
            when = datetime.fromtimestamp(msg.timestamp / 1000).strftime("%H:%M")
            who = "you" if entry.is_outgoing else entry.sender_name
            print(f"[{when}] {who}: {msg.content}", flush=True)

    return _print_new


async def _read_input(client: ChatSyncClient) -> None:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        if not line.strip():
            continue
        try:
            await client.send(line)
        except SendFailure as exc:
            logger.warning("Not sent: %s", exc.detail)


async def _run() -> None:
    client = await create_client()
    client.timeline.subscribe(_printer())
    client.connected.subscribe(
        lambda up: logger.info("Connected" if up else "Reconnecting..."),
    )
    async with client:
        try:
            await client.open_scope(GLOBAL_SCOPE)
        except FetchFailure as exc:
            logger.error("Failed to load messages: %s", exc.detail)
        await _read_input(client)


def main() -> None:
    logging.basicConfig(
        level=settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
