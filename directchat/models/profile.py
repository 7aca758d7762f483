from sqlalchemy import Column, Text

from .base import BaseModel


class Profile(BaseModel):
    """Read model of the account service's profiles; this service never writes it."""

    __tablename__ = "profiles"

    first_name = Column(Text, nullable=True)
    last_name = Column(Text, nullable=True)
    avatar_url = Column(Text, nullable=True)
