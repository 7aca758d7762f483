import enum
import uuid
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field

from directchat.core.clock import as_utc

from .types import UtcDatetime


class MessageKind(str, enum.Enum):
    TEXT = "text"
    IMAGE = "image"
    MIXED = "mixed"


# Tagged message payloads. A message always carries one of these; there is
# no "neither text nor image" state.
class TextPayload(BaseModel):
    type: Literal["text"] = "text"
    text: str

    model_config = ConfigDict(frozen=True)


class ImagePayload(BaseModel):
    type: Literal["image"] = "image"
    url: str

    model_config = ConfigDict(frozen=True)


class MixedPayload(BaseModel):
    type: Literal["mixed"] = "mixed"
    text: str
    url: str

    model_config = ConfigDict(frozen=True)


class PendingMediaPayload(BaseModel):
    """An image message whose attachment has not been resolved (yet)."""

    type: Literal["pending_media"] = "pending_media"
    text: str | None = None

    model_config = ConfigDict(frozen=True)


MessagePayload = Annotated[
    Union[TextPayload, ImagePayload, MixedPayload, PendingMediaPayload],
    Field(discriminator="type"),
]


def build_payload(
    kind: MessageKind, content: str | None, image_url: str | None
) -> TextPayload | ImagePayload | MixedPayload | PendingMediaPayload:
    """Maps a stored (kind, content, attachment url) triple onto its payload variant."""
    if kind == MessageKind.TEXT:
        return TextPayload(text=content)
    if image_url is None:
        return PendingMediaPayload(text=content)
    if kind == MessageKind.MIXED:
        return MixedPayload(text=content, url=image_url)
    return ImagePayload(url=image_url)


def payload_key(payload) -> tuple | None:
    """Logical identity of a payload, used to match an optimistic send to its echo.

    Pending media has no identity yet (no url), so it never matches.
    """
    if isinstance(payload, TextPayload):
        return ("text", payload.text)
    if isinstance(payload, ImagePayload):
        return ("image", payload.url)
    if isinstance(payload, MixedPayload):
        return ("mixed", payload.text, payload.url)
    return None


class AttachmentRead(BaseModel):
    id: uuid.UUID
    message_id: uuid.UUID
    image_url: str
    sender_id: uuid.UUID
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class MessageRead(BaseModel):
    id: uuid.UUID
    sender_id: uuid.UUID
    recipient_id: uuid.UUID
    kind: MessageKind
    payload: MessagePayload
    is_read: bool = False
    created_at: UtcDatetime

    model_config = ConfigDict(frozen=True)

    @computed_field
    @property
    def content(self) -> str | None:
        return getattr(self.payload, "text", None)

    @computed_field
    @property
    def image_url(self) -> str | None:
        return getattr(self.payload, "url", None)

    @property
    def is_pending_media(self) -> bool:
        return isinstance(self.payload, PendingMediaPayload)

    @classmethod
    def from_orm_message(cls, message, attachment=None) -> "MessageRead":
        """Builds the read model from a Message row and its (optional) Attachment row."""
        if attachment is None and "attachment" in message.__dict__:
            # Only use the relationship when it was eagerly loaded
            attachment = message.attachment
        image_url = attachment.image_url if attachment is not None else None
        kind = MessageKind(message.kind)
        return cls(
            id=message.id,
            sender_id=message.sender_id,
            recipient_id=message.recipient_id,
            kind=kind,
            payload=build_payload(kind, message.content, image_url),
            is_read=bool(message.is_read),
            created_at=as_utc(message.created_at),
        )

    def with_attachment(self, image_url: str) -> "MessageRead":
        return self.model_copy(
            update={"payload": build_payload(self.kind, self.content, image_url)}
        )


class MessageCreateRequest(BaseModel):
    content: str


class HistoryPage(BaseModel):
    messages: list[MessageRead]
    has_more: bool = False
    # Pass back as `before` to fetch the next older window
    next_before: UtcDatetime | None = None
