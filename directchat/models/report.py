from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.types import Uuid

from .base import BaseModel


class Report(BaseModel):
    __tablename__ = "reports"

    conversation_id = Column(
        Uuid(as_uuid=True), ForeignKey("conversations.id"), nullable=False
    )
    reporter_id = Column(Uuid(as_uuid=True), nullable=False)
    reported_user_id = Column(Uuid(as_uuid=True), nullable=False)
    reason = Column(Text, nullable=False)
