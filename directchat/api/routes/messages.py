import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from directchat.api.common import BaseRouter
from directchat.auth import current_user_id
from directchat.backend.gateway import Backend
from directchat.logic.messaging_processing import handle_mark_read
from directchat.schemas.message import MessageRead
from directchat.services.dependencies import get_backend

logger = logging.getLogger(__name__)
messages_router_instance = APIRouter(prefix="/messages")
router = BaseRouter(router=messages_router_instance, default_tags=["messages"])


@router.post("/{message_id}/read", response_model=MessageRead)
async def mark_message_read(
    message_id: UUID,
    user_id: UUID = Depends(current_user_id),
    backend: Backend = Depends(get_backend),
):
    """Marks a message addressed to the current user as read. Idempotent."""
    return await handle_mark_read(message_id=message_id, reader_id=user_id, backend=backend)
