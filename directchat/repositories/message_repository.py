import uuid
from datetime import datetime

from sqlalchemy import false, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from directchat.models import Attachment, Message
from directchat.repositories.base import BaseRepository
from directchat.schemas.message import MessageKind


class MessageRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def create_message(
        self,
        *,
        pair_key: str,
        sender_id: uuid.UUID,
        recipient_id: uuid.UUID,
        kind: MessageKind,
        content: str | None,
        created_at: datetime,
    ) -> Message:
        """Creates and adds a new message to the session."""
        new_message = Message(
            id=uuid.uuid4(),
            pair_key=pair_key,
            sender_id=sender_id,
            recipient_id=recipient_id,
            kind=kind,
            content=content,
            is_read=False,
            created_at=created_at,
        )
        self.session.add(new_message)
        await self.session.flush()
        return new_message

    async def get_message_by_id(self, message_id: uuid.UUID) -> Message | None:
        """Retrieves a message with its attachment loaded."""
        stmt = (
            select(Message)
            .where(Message.id == message_id)
            .options(selectinload(Message.attachment))
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def list_messages(
        self, pair_key: str, *, before: datetime | None = None, limit: int
    ) -> tuple[list[Message], bool]:
        """Returns the newest `limit` messages older than `before`, oldest first.

        The second element tells whether older messages remain.
        """
        stmt = (
            select(Message)
            .where(Message.pair_key == pair_key)
            .options(selectinload(Message.attachment))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit + 1)
        )
        if before is not None:
            stmt = stmt.where(Message.created_at < before)
        result = await self.session.execute(stmt)
        rows = list(result.scalars().all())
        has_more = len(rows) > limit
        window = rows[:limit]
        window.reverse()
        return window, has_more

    async def list_messages_since(
        self, pair_key: str, after: datetime
    ) -> list[Message]:
        """Retrieves the messages created after `after`, oldest first."""
        stmt = (
            select(Message)
            .where(Message.pair_key == pair_key, Message.created_at > after)
            .options(selectinload(Message.attachment))
            .order_by(Message.created_at.asc(), Message.id.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def delete_message(self, message: Message) -> None:
        await self.session.delete(message)
        await self.session.flush()

    async def mark_read(self, message: Message) -> Message:
        """Flips is_read to true. Already-read messages are left untouched."""
        if not message.is_read:
            message.is_read = True
            self.session.add(message)
            await self.session.flush()
        return message

    async def count_unread(
        self, recipient_id: uuid.UUID, pair_key: str | None = None
    ) -> int:
        stmt = select(func.count(Message.id)).where(
            Message.recipient_id == recipient_id, Message.is_read == false()
        )
        if pair_key is not None:
            stmt = stmt.where(Message.pair_key == pair_key)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def count_unread_by_pair(self, recipient_id: uuid.UUID) -> dict[str, int]:
        """Unread counts for every conversation of the recipient, in one query."""
        stmt = (
            select(Message.pair_key, func.count(Message.id))
            .where(Message.recipient_id == recipient_id, Message.is_read == false())
            .group_by(Message.pair_key)
        )
        result = await self.session.execute(stmt)
        return {key: count for key, count in result.all()}

    async def find_orphaned_media_messages(self, older_than: datetime) -> list[Message]:
        """Media messages created before `older_than` that never got an attachment."""
        has_attachment = select(Attachment.id).where(Attachment.message_id == Message.id)
        stmt = (
            select(Message)
            .where(
                Message.kind.in_([MessageKind.IMAGE, MessageKind.MIXED]),
                Message.created_at < older_than,
                ~has_attachment.exists(),
            )
            .options(selectinload(Message.attachment))
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
