import logging
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.core.pairing import pair_key
from directchat.schemas.conversation import ReportRead

from .exceptions import ConversationNotFoundError, ValidationError

logger = logging.getLogger(__name__)


class ReportService:
    def __init__(self, backend: Backend):
        self.backend = backend

    async def report_conversation(
        self, reporter_id: UUID, other_user_id: UUID, reason: str
    ) -> ReportRead:
        """Files a report against the other participant of an existing conversation."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A reason is required to report a conversation.")
        if reporter_id == other_user_id:
            raise ValidationError("You cannot report yourself.")

        conversation = await self.backend.get_conversation(
            pair_key(reporter_id, other_user_id)
        )
        if conversation is None:
            raise ConversationNotFoundError(
                "There is no conversation with this user to report."
            )

        report = await self.backend.create_report(
            conversation_id=conversation.id,
            reporter_id=reporter_id,
            reported_user_id=other_user_id,
            reason=reason,
        )
        logger.info(
            f"User {reporter_id} reported {other_user_id} in conversation {conversation.id}"
        )
        return report
