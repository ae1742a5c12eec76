from __future__ import annotations

from pydantic import BaseModel, TypeAdapter, field_validator

from chat_sync.domain.entities.profile import ProfileRecord
from chat_sync.domain.value_objects.enums import PresenceStatus
from chat_sync.infrastructure.ws.protocol import WireMessage


class ResultOut(BaseModel):
    success: bool
    error: str | None = None


class SendResultOut(ResultOut):
    message: WireMessage | None = None


class ConversationResultOut(ResultOut):
    conversation_id: str | None = None


class ProfileOut(BaseModel):
    user_id: str
    nickname: str
    avatar_url: str | None = None
    status: PresenceStatus | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _unknown_status_is_none(cls, value: object) -> object:
        if value not in PresenceStatus.__members__.values():
            return None
        return value

    def to_domain(self) -> ProfileRecord:
        return ProfileRecord(
            user_id=self.user_id,
            display_name=self.nickname,
            avatar_ref=self.avatar_url,
            presence=self.status,
        )


class SendIn(BaseModel):
    content: str


class ProfilesIn(BaseModel):
    user_ids: list[str]


class DirectConversationIn(BaseModel):
    other_user_id: str


MessageList = TypeAdapter(list[WireMessage])
ProfileList = TypeAdapter(list[ProfileOut])
