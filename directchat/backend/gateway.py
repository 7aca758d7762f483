import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, Optional
from uuid import UUID

from sqlalchemy.exc import (
    DisconnectionError,
    IntegrityError,
    OperationalError,
    TimeoutError as PoolTimeoutError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from directchat.core.clock import as_utc, next_message_timestamp
from directchat.core.pairing import pair_key
from directchat.repositories.attachment_repository import AttachmentRepository
from directchat.repositories.conversation_repository import ConversationRepository
from directchat.repositories.message_repository import MessageRepository
from directchat.repositories.profile_repository import ProfileRepository
from directchat.repositories.report_repository import ReportRepository
from directchat.schemas.conversation import ConversationRead, ProfileSummary, ReportRead
from directchat.schemas.message import AttachmentRead, MessageKind, MessageRead
from directchat.services.exceptions import (
    DatabaseError,
    MessageNotFoundError,
    NetworkError,
    NotAuthorizedError,
    ServiceError,
)

from .feed import ChangeFeed, EventCallback, FeedEvent, FeedSubscription, LostCallback
from .storage import LocalObjectStorage

logger = logging.getLogger(__name__)


class Backend:
    """The managed backend as seen by the messaging core.

    Each operation runs in its own session and transaction, the way a remote
    request/response call would. Driver failures are translated into
    NetworkError (transient) or DatabaseError; inserts and deletes are
    published on the change feed after commit.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        storage: LocalObjectStorage,
        feed: ChangeFeed,
    ):
        self.session_maker = session_maker
        self.storage = storage
        self.feed = feed

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_maker() as session:
            try:
                yield session
            except ServiceError:
                await session.rollback()
                raise
            except (OperationalError, DisconnectionError, PoolTimeoutError) as e:
                await session.rollback()
                logger.warning(f"Transient database error during {operation}: {e}")
                raise NetworkError(f"Failed to {operation}: backend unavailable.")
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error(f"Database error during {operation}: {e}", exc_info=True)
                raise DatabaseError(f"Failed to {operation} due to a database error.")

    # --- Messages ---

    async def _ensure_conversation(
        self, sender_id: UUID, recipient_id: UUID, created_at: datetime
    ) -> None:
        """Create-if-absent keyed by the canonical pair key."""
        async with self._session("create conversation") as session:
            conv_repo = ConversationRepository(session)
            key = pair_key(sender_id, recipient_id)
            if await conv_repo.get_conversation_by_pair_key(key):
                return
            try:
                await conv_repo.create_conversation(sender_id, recipient_id, created_at)
                await session.commit()
                logger.info(f"Created conversation {key}")
            except IntegrityError:
                # Another writer created it first
                await session.rollback()
                if not await conv_repo.get_conversation_by_pair_key(key):
                    raise

    async def create_message(
        self,
        sender_id: UUID,
        recipient_id: UUID,
        content: Optional[str],
        kind: MessageKind = MessageKind.TEXT,
    ) -> MessageRead:
        """Inserts a message and advances its conversation's last_message_at."""
        created_at = next_message_timestamp()
        await self._ensure_conversation(sender_id, recipient_id, created_at)
        key = pair_key(sender_id, recipient_id)

        async with self._session("create message") as session:
            conv_repo = ConversationRepository(session)
            msg_repo = MessageRepository(session)
            conversation = await conv_repo.get_conversation_by_pair_key(key)
            message = await msg_repo.create_message(
                pair_key=key,
                sender_id=sender_id,
                recipient_id=recipient_id,
                kind=kind,
                content=content,
                created_at=created_at,
            )
            await conv_repo.touch_last_message_at(conversation, created_at)
            await session.commit()

        created = MessageRead.from_orm_message(message)
        self.feed.publish(FeedEvent.insert(key, created))
        return created

    async def create_attachment(
        self, message_id: UUID, image_url: str, sender_id: UUID
    ) -> AttachmentRead:
        async with self._session("create attachment") as session:
            message = await MessageRepository(session).get_message_by_id(message_id)
            if message is None:
                raise MessageNotFoundError(f"Message '{message_id}' not found.")
            attachment = await AttachmentRepository(session).create_attachment(
                message_id=message_id, image_url=image_url, sender_id=sender_id
            )
            await session.commit()
            return AttachmentRead.model_validate(attachment)

    async def get_attachment(self, message_id: UUID) -> Optional[AttachmentRead]:
        async with self._session("fetch attachment") as session:
            attachment = await AttachmentRepository(
                session
            ).get_attachment_by_message_id(message_id)
            return AttachmentRead.model_validate(attachment) if attachment else None

    async def get_message(self, message_id: UUID) -> Optional[MessageRead]:
        async with self._session("fetch message") as session:
            message = await MessageRepository(session).get_message_by_id(message_id)
            return MessageRead.from_orm_message(message) if message else None

    async def delete_message(self, message_id: UUID) -> bool:
        """Deletes a message (and its attachment). Returns False if it was already gone."""
        async with self._session("delete message") as session:
            msg_repo = MessageRepository(session)
            message = await msg_repo.get_message_by_id(message_id)
            if message is None:
                return False
            key = message.pair_key
            await msg_repo.delete_message(message)
            await session.commit()

        self.feed.publish(FeedEvent.delete(key, message_id))
        return True

    async def list_messages(
        self, key: str, *, before: Optional[datetime] = None, limit: int
    ) -> tuple[list[MessageRead], bool]:
        async with self._session("list messages") as session:
            messages, has_more = await MessageRepository(session).list_messages(
                key, before=as_utc(before), limit=limit
            )
            return [MessageRead.from_orm_message(m) for m in messages], has_more

    async def list_messages_since(self, key: str, after: datetime) -> list[MessageRead]:
        async with self._session("list recent messages") as session:
            messages = await MessageRepository(session).list_messages_since(
                key, as_utc(after)
            )
            return [MessageRead.from_orm_message(m) for m in messages]

    async def mark_read(self, message_id: UUID, reader_id: UUID) -> MessageRead:
        """Idempotent: marking an already-read message again is not an error."""
        async with self._session("mark message read") as session:
            msg_repo = MessageRepository(session)
            message = await msg_repo.get_message_by_id(message_id)
            if message is None:
                raise MessageNotFoundError(f"Message '{message_id}' not found.")
            if message.recipient_id != reader_id:
                raise NotAuthorizedError("Only the recipient can mark a message as read.")
            await msg_repo.mark_read(message)
            await session.commit()
            return MessageRead.from_orm_message(message)

    async def count_unread(self, user_id: UUID, key: Optional[str] = None) -> int:
        async with self._session("count unread messages") as session:
            return await MessageRepository(session).count_unread(user_id, key)

    async def count_unread_by_pair(self, user_id: UUID) -> dict[str, int]:
        async with self._session("count unread messages") as session:
            return await MessageRepository(session).count_unread_by_pair(user_id)

    async def purge_orphaned_messages(self, older_than: datetime) -> int:
        """Deletes media messages whose attachment never got linked."""
        async with self._session("purge orphaned messages") as session:
            msg_repo = MessageRepository(session)
            orphans = await msg_repo.find_orphaned_media_messages(as_utc(older_than))
            deleted = [(m.pair_key, m.id) for m in orphans]
            for message in orphans:
                await msg_repo.delete_message(message)
            await session.commit()

        for key, message_id in deleted:
            self.feed.publish(FeedEvent.delete(key, message_id))
        if deleted:
            logger.warning(f"Purged {len(deleted)} orphaned media message(s)")
        return len(deleted)

    # --- Realtime ---

    async def subscribe(
        self,
        key: str,
        on_event: EventCallback,
        on_lost: Optional[LostCallback] = None,
    ) -> FeedSubscription:
        return self.feed.subscribe(key, on_event, on_lost)

    async def unsubscribe(self, subscription: FeedSubscription) -> None:
        self.feed.unsubscribe(subscription)

    # --- Object storage ---

    async def upload_object(self, path: str, data: bytes, content_type: str) -> str:
        return await self.storage.upload(path, data, content_type)

    async def delete_object(self, path: str) -> None:
        await self.storage.delete(path)

    # --- Conversations, profiles, reports ---

    async def list_conversations(self, user_id: UUID) -> list[ConversationRead]:
        async with self._session("list conversations") as session:
            conversations = await ConversationRepository(
                session
            ).list_user_conversations(user_id)
            return [ConversationRead.model_validate(c) for c in conversations]

    async def get_conversation(self, key: str) -> Optional[ConversationRead]:
        async with self._session("fetch conversation") as session:
            conversation = await ConversationRepository(
                session
            ).get_conversation_by_pair_key(key)
            return ConversationRead.model_validate(conversation) if conversation else None

    async def resolve_profiles(self, user_ids: Iterable[UUID]) -> list[ProfileSummary]:
        async with self._session("resolve profiles") as session:
            profiles = await ProfileRepository(session).get_profiles_by_ids(user_ids)
            return [ProfileSummary.model_validate(p) for p in profiles]

    async def create_report(
        self,
        conversation_id: UUID,
        reporter_id: UUID,
        reported_user_id: UUID,
        reason: str,
    ) -> ReportRead:
        async with self._session("create report") as session:
            report = await ReportRepository(session).create_report(
                conversation_id=conversation_id,
                reporter_id=reporter_id,
                reported_user_id=reported_user_id,
                reason=reason,
            )
            await session.commit()
            return ReportRead.model_validate(report)
