# Makes 'models' a package and simplifies imports

from .attachment import Attachment
from .base import BaseModel, metadata
from .conversation import Conversation
from .message import Message
from .profile import Profile
from .report import Report

__all__ = [
    "BaseModel",
    "metadata",
    "Attachment",
    "Conversation",
    "Message",
    "Profile",
    "Report",
]
