import logging
from uuid import UUID

from fastapi import APIRouter, Depends

from directchat.api.common import BaseRouter
from directchat.auth import current_user_id
from directchat.logic.messaging_processing import handle_get_unread_count
from directchat.schemas.conversation import UnreadCountResponse
from directchat.services.conversation_index import ConversationIndex
from directchat.services.dependencies import get_conversation_index

logger = logging.getLogger(__name__)
me_router_instance = APIRouter(prefix="/users/me")
router = BaseRouter(router=me_router_instance, default_tags=["me"])


@router.get("/unread", response_model=UnreadCountResponse)
async def get_unread_count(
    user_id: UUID = Depends(current_user_id),
    index: ConversationIndex = Depends(get_conversation_index),
):
    """Total unread messages for the dashboard badge."""
    return await handle_get_unread_count(user_id=user_id, index=index)
