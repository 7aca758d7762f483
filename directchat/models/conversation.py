from sqlalchemy import CheckConstraint, Column, DateTime, Text
from sqlalchemy.types import Uuid

from .base import BaseModel


class Conversation(BaseModel):
    __tablename__ = "conversations"

    # id, created_at are inherited from BaseModel
    # participant_a sorts before participant_b; pair_key is "<a>:<b>"
    participant_a = Column(Uuid(as_uuid=True), nullable=False, index=True)
    participant_b = Column(Uuid(as_uuid=True), nullable=False, index=True)
    pair_key = Column(Text, unique=True, nullable=False)
    last_message_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "participant_a <> participant_b", name="ck_conversation_distinct_participants"
        ),
    )
