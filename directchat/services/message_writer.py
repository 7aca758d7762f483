import logging
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.core.config import settings
from directchat.core.retry import retry_async
from directchat.schemas.message import MessageKind, MessageRead

from .exceptions import NetworkError, ValidationError

logger = logging.getLogger(__name__)


class MessageWriter:
    def __init__(
        self,
        backend: Backend,
        retry_attempts: int = settings.SEND_RETRY_ATTEMPTS,
        retry_initial_delay: float = settings.RETRY_INITIAL_DELAY,
        retry_max_delay: float = settings.RETRY_MAX_DELAY,
    ):
        self.backend = backend
        self.retry_attempts = retry_attempts
        self.retry_initial_delay = retry_initial_delay
        self.retry_max_delay = retry_max_delay

    async def send(self, sender_id: UUID, recipient_id: UUID, text: str) -> MessageRead:
        """
        Persists a text message from `sender_id` to `recipient_id`.

        The text is trimmed; blank text is rejected before any backend call.
        Transient backend failures are retried, then surface as NetworkError.
        """
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text cannot be empty.")
        if sender_id == recipient_id:
            raise ValidationError("You cannot send a message to yourself.")

        message = await retry_async(
            lambda: self.backend.create_message(
                sender_id, recipient_id, content, MessageKind.TEXT
            ),
            attempts=self.retry_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            retry_on=(NetworkError,),
            description=f"Sending message from {sender_id}",
        )
        logger.info(f"Message {message.id} sent from {sender_id} to {recipient_id}")
        return message
