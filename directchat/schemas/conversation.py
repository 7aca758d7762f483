from uuid import UUID

from pydantic import BaseModel, ConfigDict, computed_field

from .types import UtcDatetime

UNKNOWN_USER_NAME = "Unknown user"


class ProfileSummary(BaseModel):
    id: UUID
    first_name: str | None = None
    last_name: str | None = None
    avatar_url: str | None = None
    # False when the profile could not be resolved and this is a stand-in
    resolved: bool = True

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or UNKNOWN_USER_NAME

    @classmethod
    def placeholder(cls, user_id: UUID) -> "ProfileSummary":
        return cls(id=user_id, resolved=False)


class ConversationRead(BaseModel):
    id: UUID
    participant_a: UUID
    participant_b: UUID
    pair_key: str
    last_message_at: UtcDatetime | None = None
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class ConversationSummary(BaseModel):
    id: UUID
    pair_key: str
    counterpart: ProfileSummary
    last_message_at: UtcDatetime | None = None
    created_at: UtcDatetime
    unread_count: int = 0


class UnreadCountResponse(BaseModel):
    unread: int


# Schema for request body when reporting a conversation
class ReportCreateRequest(BaseModel):
    reason: str


class ReportRead(BaseModel):
    id: UUID
    conversation_id: UUID
    reporter_id: UUID
    reported_user_id: UUID
    reason: str
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)
