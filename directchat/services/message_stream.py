import logging
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.core.clock import as_utc, utcnow
from directchat.core.config import settings
from directchat.core.pairing import pair_key
from directchat.schemas.message import HistoryPage, MessageRead

from .exceptions import ValidationError

logger = logging.getLogger(__name__)


class MessageStream:
    """Loads conversation history in oldest-first windows."""

    def __init__(
        self,
        backend: Backend,
        page_size: int = settings.HISTORY_PAGE_SIZE,
        max_page_size: int = settings.HISTORY_MAX_PAGE_SIZE,
        attachment_timeout: float = settings.ATTACHMENT_RESOLVE_TIMEOUT,
    ):
        self.backend = backend
        self.page_size = page_size
        self.max_page_size = max_page_size
        self.attachment_timeout = timedelta(seconds=attachment_timeout)

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.page_size
        if limit < 1:
            raise ValidationError("Page size must be at least 1.")
        return min(limit, self.max_page_size)

    def _visible(self, messages: list[MessageRead]) -> list[MessageRead]:
        """Drops media messages whose attachment should have landed by now."""
        cutoff = utcnow() - self.attachment_timeout
        visible = []
        for message in messages:
            if message.is_pending_media and message.created_at < cutoff:
                logger.warning(
                    f"Hiding media message {message.id} with no attachment"
                )
                continue
            visible.append(message)
        return visible

    async def load_history(
        self,
        user_a: UUID,
        user_b: UUID,
        before: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> HistoryPage:
        """
        Returns the newest `limit` messages older than `before`, ascending by
        created_at, with attachments joined. An empty page is a valid result.
        """
        limit = self._clamp_limit(limit)
        key = pair_key(user_a, user_b)
        messages, has_more = await self.backend.list_messages(
            key, before=as_utc(before), limit=limit
        )
        # The cursor comes from the raw window so hidden orphans don't stall paging
        next_before = messages[0].created_at if has_more and messages else None
        logger.debug(
            f"Loaded {len(messages)} message(s) for {key} before {before} (has_more={has_more})"
        )
        return HistoryPage(
            messages=self._visible(messages),
            has_more=has_more,
            next_before=next_before,
        )

    async def messages_since(
        self, user_a: UUID, user_b: UUID, after: datetime
    ) -> list[MessageRead]:
        """Everything created after `after`, oldest first. Used to fill gaps."""
        messages = await self.backend.list_messages_since(
            pair_key(user_a, user_b), as_utc(after)
        )
        return self._visible(messages)
