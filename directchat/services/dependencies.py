from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from directchat.backend.feed import ChangeFeed
from directchat.backend.gateway import Backend
from directchat.backend.storage import LocalObjectStorage
from directchat.core.config import settings
from directchat.db import get_session_maker

from .attachment_uploader import AttachmentUploader
from .conversation_index import ConversationIndex
from .message_stream import MessageStream
from .message_writer import MessageWriter
from .provider import ServiceProvider
from .realtime_dispatcher import RealtimeDispatcher
from .report_service import ReportService


def get_change_feed() -> ChangeFeed:
    return ServiceProvider.get_service(ChangeFeed)


def get_object_storage() -> LocalObjectStorage:
    return ServiceProvider.get_service(
        LocalObjectStorage,
        root=settings.MEDIA_ROOT,
        base_url=settings.MEDIA_BASE_URL,
    )


def get_backend(
    session_maker: async_sessionmaker[AsyncSession] = Depends(get_session_maker),
    storage: LocalObjectStorage = Depends(get_object_storage),
    feed: ChangeFeed = Depends(get_change_feed),
) -> Backend:
    """Provides the Backend facade the messaging components talk to."""
    return ServiceProvider.get_service(
        Backend, session_maker=session_maker, storage=storage, feed=feed
    )


def get_conversation_index(backend: Backend = Depends(get_backend)) -> ConversationIndex:
    return ServiceProvider.get_service(ConversationIndex, backend=backend)


def get_message_stream(backend: Backend = Depends(get_backend)) -> MessageStream:
    return ServiceProvider.get_service(MessageStream, backend=backend)


def get_message_writer(backend: Backend = Depends(get_backend)) -> MessageWriter:
    return ServiceProvider.get_service(MessageWriter, backend=backend)


def get_attachment_uploader(
    backend: Backend = Depends(get_backend),
) -> AttachmentUploader:
    return ServiceProvider.get_service(AttachmentUploader, backend=backend)


def get_realtime_dispatcher(
    backend: Backend = Depends(get_backend),
    stream: MessageStream = Depends(get_message_stream),
) -> RealtimeDispatcher:
    """The dispatcher is shared so subscriptions to one pair are counted together."""
    return ServiceProvider.get_service(RealtimeDispatcher, backend=backend, stream=stream)


def get_report_service(backend: Backend = Depends(get_backend)) -> ReportService:
    return ServiceProvider.get_service(ReportService, backend=backend)
