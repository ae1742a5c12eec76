from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ScrollState:
    is_at_bottom: bool = True
    unseen_count: int = 0
