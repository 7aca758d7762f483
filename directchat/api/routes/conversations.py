import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status

from directchat.api.common import BaseRouter
from directchat.auth import current_user_id
from directchat.logic.messaging_processing import (
    handle_get_history,
    handle_list_conversations,
    handle_report_conversation,
    handle_send_image,
    handle_send_message,
)
from directchat.schemas.conversation import (
    ConversationSummary,
    ReportCreateRequest,
    ReportRead,
)
from directchat.schemas.message import HistoryPage, MessageCreateRequest, MessageRead
from directchat.services.attachment_uploader import AttachmentUploader
from directchat.services.conversation_index import ConversationIndex
from directchat.services.dependencies import (
    get_attachment_uploader,
    get_conversation_index,
    get_message_stream,
    get_message_writer,
    get_report_service,
)
from directchat.services.message_stream import MessageStream
from directchat.services.message_writer import MessageWriter
from directchat.services.report_service import ReportService

logger = logging.getLogger(__name__)
conversations_router_instance = APIRouter(prefix="/conversations")
router = BaseRouter(router=conversations_router_instance, default_tags=["conversations"])


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    user_id: UUID = Depends(current_user_id),
    index: ConversationIndex = Depends(get_conversation_index),
):
    """Conversations of the current user, most recent first."""
    return await handle_list_conversations(user_id=user_id, index=index)


@router.get("/{other_user_id}/messages", response_model=HistoryPage)
async def get_messages(
    other_user_id: UUID,
    before: Optional[datetime] = Query(None),
    after: Optional[datetime] = Query(None),
    limit: Optional[int] = Query(None, ge=1),
    user_id: UUID = Depends(current_user_id),
    stream: MessageStream = Depends(get_message_stream),
):
    """One page of history; pass `next_before` back as `before` for older messages.

    `after` returns every message newer than the given time.
    """
    return await handle_get_history(
        user_id=user_id,
        other_user_id=other_user_id,
        stream=stream,
        before=before,
        limit=limit,
        after=after,
    )


@router.post(
    "/{other_user_id}/messages",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    other_user_id: UUID,
    message_data: MessageCreateRequest,
    user_id: UUID = Depends(current_user_id),
    writer: MessageWriter = Depends(get_message_writer),
):
    return await handle_send_message(
        sender_id=user_id,
        recipient_id=other_user_id,
        content=message_data.content,
        writer=writer,
    )


@router.post(
    "/{other_user_id}/images",
    response_model=MessageRead,
    status_code=status.HTTP_201_CREATED,
)
async def send_image(
    other_user_id: UUID,
    file: UploadFile = File(...),
    caption: Optional[str] = Form(None),
    user_id: UUID = Depends(current_user_id),
    uploader: AttachmentUploader = Depends(get_attachment_uploader),
):
    """Uploads an image (optionally captioned) as a new message."""
    return await handle_send_image(
        sender_id=user_id,
        recipient_id=other_user_id,
        file=file,
        uploader=uploader,
        caption=caption,
    )


@router.post(
    "/{other_user_id}/reports",
    response_model=ReportRead,
    status_code=status.HTTP_201_CREATED,
)
async def report_conversation(
    other_user_id: UUID,
    report_data: ReportCreateRequest,
    user_id: UUID = Depends(current_user_id),
    report_service: ReportService = Depends(get_report_service),
):
    return await handle_report_conversation(
        reporter_id=user_id,
        other_user_id=other_user_id,
        reason=report_data.reason,
        report_service=report_service,
    )
