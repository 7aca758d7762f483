from sqlalchemy.ext.asyncio import AsyncSession


class BaseRepository:
    """Holds the session; commit/rollback belong to the caller."""

    def __init__(self, session: AsyncSession):
        self.session = session
