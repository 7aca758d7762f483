from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from directchat.models import Report

from .base import BaseRepository


class ReportRepository(BaseRepository):
    def __init__(self, session: AsyncSession):
        super().__init__(session)

    async def create_report(
        self,
        conversation_id: UUID,
        reporter_id: UUID,
        reported_user_id: UUID,
        reason: str,
    ) -> Report:
        """Creates a new moderation report record."""
        report = Report(
            conversation_id=conversation_id,
            reporter_id=reporter_id,
            reported_user_id=reported_user_id,
            reason=reason,
        )
        self.session.add(report)
        await self.session.flush()
        await self.session.refresh(report)
        return report
