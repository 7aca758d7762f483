from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from directchat.models import Profile

from .base import BaseRepository


class ProfileRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def get_profiles_by_ids(self, user_ids: Iterable[UUID]) -> Sequence[Profile]:
        """Resolves any number of profiles with a single IN query."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return []
        stmt = select(Profile).where(Profile.id.in_(ids))
        result = await self.session.execute(stmt)
        return result.scalars().all()
