from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Enum as SQLAlchemyEnum,
    Index,
    Text,
    sql,
)
from sqlalchemy.orm import relationship
from sqlalchemy.types import Uuid

from directchat.schemas.message import MessageKind  # Import the Python Enum
from .base import BaseModel


class Message(BaseModel):
    __tablename__ = "messages"

    # id, created_at are inherited from BaseModel
    pair_key = Column(Text, nullable=False)
    sender_id = Column(Uuid(as_uuid=True), nullable=False)
    recipient_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    kind = Column(
        SQLAlchemyEnum(
            MessageKind,
            name="message_kind",
            values_callable=lambda kinds: [kind.value for kind in kinds],
        ),
        nullable=False,
    )
    content = Column(Text, nullable=True)
    is_read = Column(Boolean, nullable=False, server_default=sql.expression.false())

    # Relationships
    attachment = relationship(
        "Attachment",
        back_populates="message",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("ix_messages_pair_key_created_at", "pair_key", "created_at"),
        CheckConstraint(
            "(kind = 'image' AND content IS NULL)"
            " OR (kind IN ('text', 'mixed') AND content IS NOT NULL)",
            name="ck_message_payload",
        ),
    )
