import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from directchat.models import Attachment
from directchat.repositories.base import BaseRepository


class AttachmentRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def create_attachment(
        self, message_id: uuid.UUID, image_url: str, sender_id: uuid.UUID
    ) -> Attachment:
        """Links an uploaded image to an existing message."""
        attachment = Attachment(
            message_id=message_id,
            image_url=image_url,
            sender_id=sender_id,
        )
        self.session.add(attachment)
        await self.session.flush()
        return attachment

    async def get_attachment_by_message_id(
        self, message_id: uuid.UUID
    ) -> Attachment | None:
        stmt = select(Attachment).where(Attachment.message_id == message_id)
        result = await self.session.execute(stmt)
        return result.scalars().first()
