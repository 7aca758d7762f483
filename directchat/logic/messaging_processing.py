import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import UploadFile

# Logic behind the messaging routes, kept apart from FastAPI so it can be
# tested against the services directly.
from directchat.backend.gateway import Backend
from directchat.schemas.conversation import (
    ConversationSummary,
    ReportRead,
    UnreadCountResponse,
)
from directchat.schemas.message import HistoryPage, MessageRead
from directchat.services.attachment_uploader import AttachmentUploader
from directchat.services.conversation_index import ConversationIndex
from directchat.services.conversation_view import ConversationView, Listener
from directchat.services.exceptions import ServiceError, ValidationError
from directchat.services.message_stream import MessageStream
from directchat.services.message_writer import MessageWriter
from directchat.services.realtime_dispatcher import RealtimeDispatcher
from directchat.services.report_service import ReportService

logger = logging.getLogger(__name__)


async def handle_list_conversations(
    user_id: UUID, index: ConversationIndex
) -> list[ConversationSummary]:
    return await index.list_conversations(user_id)


async def handle_get_unread_count(
    user_id: UUID, index: ConversationIndex
) -> UnreadCountResponse:
    return UnreadCountResponse(unread=await index.total_unread(user_id))


async def handle_get_history(
    user_id: UUID,
    other_user_id: UUID,
    stream: MessageStream,
    before: Optional[datetime] = None,
    limit: Optional[int] = None,
    after: Optional[datetime] = None,
) -> HistoryPage:
    """
    Loads one window of the conversation between the two users.

    With `after`, returns everything newer than that timestamp instead; clients
    use it to catch up on messages stored since their last page or event.
    """
    if user_id == other_user_id:
        raise ValidationError("There is no conversation with yourself.")
    if after is not None:
        if before is not None:
            raise ValidationError("Use either before or after, not both.")
        messages = await stream.messages_since(user_id, other_user_id, after)
        return HistoryPage(messages=messages)
    return await stream.load_history(user_id, other_user_id, before=before, limit=limit)


async def handle_send_message(
    sender_id: UUID,
    recipient_id: UUID,
    content: str,
    writer: MessageWriter,
) -> MessageRead:
    """
    Sends a text message.

    Raises:
        ValidationError: Blank text or a message to oneself.
        NetworkError: The backend stayed unavailable through the retries.
        ServiceError: For other service-level errors.
    """
    # Service exceptions propagate to the route's error handling
    return await writer.send(sender_id, recipient_id, content)


async def handle_send_image(
    sender_id: UUID,
    recipient_id: UUID,
    file: UploadFile,
    uploader: AttachmentUploader,
    caption: Optional[str] = None,
) -> MessageRead:
    """Reads the uploaded file and sends it as an image message."""
    data = await file.read()
    content_type = (file.content_type or "").lower()
    logger.debug(
        f"Handler: image upload from {sender_id} ({len(data)} bytes, {content_type})"
    )
    try:
        return await uploader.send(sender_id, recipient_id, data, content_type, caption)
    except ServiceError:
        raise
    except Exception as e:
        logger.error(f"Handler: Unexpected error sending image: {e}", exc_info=True)
        raise ServiceError("An unexpected error occurred while sending the image.")
    finally:
        await file.close()


async def handle_mark_read(
    message_id: UUID, reader_id: UUID, backend: Backend
) -> MessageRead:
    """Marks a message read for its recipient. Repeating the call is harmless."""
    message = await backend.mark_read(message_id, reader_id)
    logger.info(f"Handler: message {message_id} marked read by {reader_id}")
    return message


async def handle_report_conversation(
    reporter_id: UUID,
    other_user_id: UUID,
    reason: str,
    report_service: ReportService,
) -> ReportRead:
    return await report_service.report_conversation(reporter_id, other_user_id, reason)


async def handle_open_conversation_view(
    user_id: UUID,
    other_user_id: UUID,
    *,
    backend: Backend,
    stream: MessageStream,
    writer: MessageWriter,
    uploader: AttachmentUploader,
    dispatcher: RealtimeDispatcher,
    on_insert: Optional[Listener] = None,
    on_delete: Optional[Listener] = None,
    on_lost: Optional[Listener] = None,
) -> ConversationView:
    """
    Opens a live view of the conversation for a socket client.

    Raises:
        ValidationError: A conversation with oneself.
        NetworkError: Subscribing or loading history failed.
    """
    view = ConversationView(
        user_id,
        other_user_id,
        backend=backend,
        stream=stream,
        writer=writer,
        uploader=uploader,
        dispatcher=dispatcher,
        on_insert=on_insert,
        on_delete=on_delete,
        on_lost=on_lost,
    )
    await view.open()
    logger.info(
        f"Handler: view opened for {user_id} with {other_user_id} "
        f"({len(view.messages())} message(s))"
    )
    return view
