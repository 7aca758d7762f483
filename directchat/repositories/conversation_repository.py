from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from directchat.core.clock import as_utc
from directchat.core.pairing import canonical_pair, pair_key
from directchat.models import Conversation

from .base import BaseRepository


class ConversationRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def get_conversation_by_pair_key(self, key: str) -> Conversation | None:
        """Retrieves the conversation for a canonical pair key."""
        stmt = select(Conversation).filter(Conversation.pair_key == key)
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def create_conversation(
        self, user_a: UUID, user_b: UUID, created_at: datetime
    ) -> Conversation:
        """Inserts the pair's conversation. Raises IntegrityError if it already exists."""
        low, high = canonical_pair(user_a, user_b)
        conversation = Conversation(
            participant_a=low,
            participant_b=high,
            pair_key=pair_key(user_a, user_b),
            created_at=created_at,
        )
        self.session.add(conversation)
        await self.session.flush()
        return conversation

    async def touch_last_message_at(
        self, conversation: Conversation, message_at: datetime
    ) -> None:
        """Advances last_message_at; never moves it backwards."""
        current = as_utc(conversation.last_message_at)
        if current is None or message_at > current:
            conversation.last_message_at = message_at
            self.session.add(conversation)
            await self.session.flush()

    async def list_user_conversations(self, user_id: UUID) -> Sequence[Conversation]:
        """Lists the user's conversations that hold at least one message, most recent first."""
        stmt = (
            select(Conversation)
            .where(
                or_(
                    Conversation.participant_a == user_id,
                    Conversation.participant_b == user_id,
                ),
                Conversation.last_message_at.is_not(None),
            )
            .order_by(Conversation.last_message_at.desc(), Conversation.id)
        )
        result = await self.session.execute(stmt)
        return result.scalars().all()
