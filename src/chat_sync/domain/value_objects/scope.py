from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ScopeKind


@dataclass(frozen=True, slots=True)
class Scope:
    """Conversation a message belongs to.

    The global room is a singleton scope without a conversation id; every
    direct conversation is its own scope.
    """

    kind: ScopeKind
    conversation_id: str | None = None

    @classmethod
    def global_room(cls) -> Scope:
        return GLOBAL_SCOPE

    @classmethod
    def direct(cls, conversation_id: str) -> Scope:
        if not conversation_id:
            raise ValueError("direct scope requires a conversation id")
        return cls(kind=ScopeKind.DIRECT, conversation_id=conversation_id)

    @property
    def is_direct(self) -> bool:
        return self.kind == ScopeKind.DIRECT

    def __str__(self) -> str:
        if self.conversation_id is None:
            return str(self.kind)
        return f"{self.kind}:{self.conversation_id}"


GLOBAL_SCOPE = Scope(kind=ScopeKind.GLOBAL)
