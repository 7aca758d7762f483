from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from .base import BaseModel


class Attachment(BaseModel):
    __tablename__ = "attachments"

    # id, created_at are inherited from BaseModel
    message_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("messages.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    image_url = Column(Text, nullable=False)
    sender_id = Column(Uuid(as_uuid=True), nullable=False)

    message = relationship("Message", back_populates="attachment")
