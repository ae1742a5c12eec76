from __future__ import annotations

import logging
from typing import Callable

from chat_sync.application.dto.scroll import ScrollState
from chat_sync.application.reactive import Signal

logger = logging.getLogger(__name__)

ScrollRequest = Callable[[], None]


class ScrollPositionTracker:
    """Bottom proximity of the viewport and the count of messages the viewer has not seen."""

    def __init__(self, *, bottom_threshold: int = 50) -> None:
        self._bottom_threshold = bottom_threshold
        self.state: Signal[ScrollState] = Signal(ScrollState())
        self._on_scroll_request: ScrollRequest | None = None

    @property
    def is_at_bottom(self) -> bool:
        return self.state.value.is_at_bottom

    @property
    def unseen_count(self) -> int:
        return self.state.value.unseen_count

    def set_scroll_handler(self, handler: ScrollRequest | None) -> None:
        self._on_scroll_request = handler

    def report_scroll(self, scroll_top: float, scroll_height: float, viewport_height: float) -> None:
        at_bottom = (scroll_height - scroll_top - viewport_height) < self._bottom_threshold
        unseen = 0 if at_bottom else self.unseen_count
        self.state.set(ScrollState(is_at_bottom=at_bottom, unseen_count=unseen))

    def notify_new_messages(self, count: int) -> None:
        """Messages from other people were appended."""
        if count <= 0:
            return
        if self.is_at_bottom:
            self.request_scroll_to_bottom()
            return
        self.state.set(ScrollState(is_at_bottom=False, unseen_count=self.unseen_count + count))

    def notify_own_message(self) -> None:
        """The viewer sent something; follow it instead of counting it."""
        self.request_scroll_to_bottom()

    def scroll_to_bottom_acknowledged(self) -> None:
        self.state.set(ScrollState(is_at_bottom=self.is_at_bottom, unseen_count=0))

    def reset(self) -> None:
        self.state.set(ScrollState())

    def request_scroll_to_bottom(self) -> None:
        if self._on_scroll_request is None:
            return
        try:
            self._on_scroll_request()
        except Exception:
            logger.exception("Scroll request handler failed")
