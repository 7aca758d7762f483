import logging
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.core.pairing import counterpart_of
from directchat.schemas.conversation import ConversationSummary, ProfileSummary

from .exceptions import ServiceError

logger = logging.getLogger(__name__)


class ConversationIndex:
    """Lists a user's conversations with the counterpart profile resolved."""

    def __init__(self, backend: Backend):
        self.backend = backend

    async def _resolve_counterparts(
        self, user_ids: list[UUID]
    ) -> dict[UUID, ProfileSummary]:
        """One batched lookup. Missing or failed profiles become placeholders."""
        if not user_ids:
            return {}
        try:
            profiles = await self.backend.resolve_profiles(user_ids)
        except ServiceError as e:
            logger.warning(f"Profile resolution failed for {len(user_ids)} user(s): {e}")
            profiles = []
        resolved = {profile.id: profile for profile in profiles}
        return {
            user_id: resolved.get(user_id) or ProfileSummary.placeholder(user_id)
            for user_id in user_ids
        }

    async def list_conversations(self, user_id: UUID) -> list[ConversationSummary]:
        """Conversations of `user_id`, most recently active first."""
        conversations = await self.backend.list_conversations(user_id)
        if not conversations:
            return []

        counterpart_ids = [
            counterpart_of(user_id, c.participant_a, c.participant_b)
            for c in conversations
        ]
        profiles = await self._resolve_counterparts(list(dict.fromkeys(counterpart_ids)))
        unread = await self.backend.count_unread_by_pair(user_id)

        summaries = [
            ConversationSummary(
                id=conversation.id,
                pair_key=conversation.pair_key,
                counterpart=profiles[counterpart_id],
                last_message_at=conversation.last_message_at,
                created_at=conversation.created_at,
                unread_count=unread.get(conversation.pair_key, 0),
            )
            for conversation, counterpart_id in zip(conversations, counterpart_ids)
        ]
        logger.debug(f"Listed {len(summaries)} conversation(s) for user {user_id}")
        return summaries

    async def total_unread(self, user_id: UUID) -> int:
        return await self.backend.count_unread(user_id)
