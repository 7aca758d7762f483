import logging
import uuid
from typing import Any, Callable, Optional
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.core.config import settings
from directchat.core.retry import retry_async
from directchat.schemas.message import MessageKind, MessageRead

from .exceptions import NetworkError, PartialWriteError, ServiceError, ValidationError

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
}


def object_path_for(sender_id: UUID, content_type: str) -> str:
    return f"{sender_id}/{uuid.uuid4()}.{IMAGE_EXTENSIONS[content_type]}"


class AttachmentUploader:
    """Stores an image and links it to a new message.

    Order of writes: object, message, attachment. If the attachment cannot be
    linked the message is deleted again so it never lingers without an image.
    """

    def __init__(
        self,
        backend: Backend,
        max_bytes: int = settings.MAX_IMAGE_BYTES,
        retry_attempts: int = settings.SEND_RETRY_ATTEMPTS,
        retry_initial_delay: float = settings.RETRY_INITIAL_DELAY,
        retry_max_delay: float = settings.RETRY_MAX_DELAY,
    ):
        self.backend = backend
        self.max_bytes = max_bytes
        self.retry_attempts = retry_attempts
        self.retry_initial_delay = retry_initial_delay
        self.retry_max_delay = retry_max_delay

    async def _retry(self, operation, description: str):
        return await retry_async(
            operation,
            attempts=self.retry_attempts,
            initial_delay=self.retry_initial_delay,
            max_delay=self.retry_max_delay,
            retry_on=(NetworkError,),
            description=description,
        )

    def _validate(
        self, sender_id: UUID, recipient_id: UUID, data: bytes, content_type: str
    ) -> None:
        if sender_id == recipient_id:
            raise ValidationError("You cannot send a message to yourself.")
        if content_type not in IMAGE_EXTENSIONS:
            raise ValidationError(f"Unsupported image type '{content_type}'.")
        if not data:
            raise ValidationError("Image file is empty.")
        if len(data) > self.max_bytes:
            raise ValidationError(
                f"Image exceeds the maximum size of {self.max_bytes} bytes."
            )

    async def _store(self, sender_id: UUID, data: bytes, content_type: str):
        paths: list[str] = []

        async def attempt() -> str:
            # Never reuse a path: a failed attempt may have left a partial object
            path = object_path_for(sender_id, content_type)
            paths.append(path)
            return await self.backend.upload_object(path, data, content_type)

        url = await self._retry(attempt, f"Uploading image for {sender_id}")
        return paths[-1], url

    async def _compensate(self, message: MessageRead, object_path: str) -> bool:
        try:
            await self._retry(
                lambda: self.backend.delete_message(message.id),
                f"Deleting orphaned message {message.id}",
            )
        except ServiceError as e:
            logger.error(
                f"Could not delete orphaned message {message.id}: {e}", exc_info=True
            )
            return False
        await self.backend.delete_object(object_path)
        return True

    async def send(
        self,
        sender_id: UUID,
        recipient_id: UUID,
        data: bytes,
        content_type: str,
        caption: Optional[str] = None,
        on_stored: Optional[Callable[[str], Any]] = None,
    ) -> MessageRead:
        """Uploads `data` and returns the message with its image resolved.

        `on_stored` is called with the public url once the object is stored,
        before the message exists.

        Raises:
            ValidationError: Bad content type, empty or oversized image.
            UploadPermissionError: Storage refused the write.
            NetworkError: Transient failure that outlasted the retries.
            PartialWriteError: The attachment could not be linked.
        """
        self._validate(sender_id, recipient_id, data, content_type)
        caption = (caption or "").strip() or None
        kind = MessageKind.MIXED if caption else MessageKind.IMAGE

        object_path, image_url = await self._store(sender_id, data, content_type)
        if on_stored is not None:
            on_stored(image_url)

        try:
            message = await self._retry(
                lambda: self.backend.create_message(
                    sender_id, recipient_id, caption, kind
                ),
                f"Creating image message from {sender_id}",
            )
        except ServiceError:
            await self.backend.delete_object(object_path)
            raise

        try:
            await self._retry(
                lambda: self.backend.create_attachment(message.id, image_url, sender_id),
                f"Linking attachment to message {message.id}",
            )
        except ServiceError as e:
            logger.error(f"Attachment for message {message.id} failed: {e}")
            compensated = await self._compensate(message, object_path)
            raise PartialWriteError(
                "The image could not be attached to its message.",
                message_id=message.id,
                compensated=compensated,
            ) from e

        logger.info(f"Image message {message.id} sent from {sender_id} to {recipient_id}")
        return message.with_attachment(image_url)
