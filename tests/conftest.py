import os
import tempfile
from pathlib import Path
from typing import AsyncGenerator

# Settings are read at import time, so the environment must be in place first
_TEST_DIR = Path(tempfile.mkdtemp(prefix="directchat-tests-"))
os.environ.setdefault("SECRET", "test-secret")
os.environ.setdefault(
    "DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR / 'app.db'}"
)
os.environ.setdefault("MEDIA_ROOT", str(_TEST_DIR / "media"))

import pytest  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from directchat.backend.feed import ChangeFeed  # noqa: E402
from directchat.backend.gateway import Backend  # noqa: E402
from directchat.backend.storage import LocalObjectStorage  # noqa: E402
from directchat.db import get_session_maker  # noqa: E402
from directchat.main import app  # noqa: E402
from directchat.models import metadata  # noqa: E402
from directchat.services.attachment_uploader import AttachmentUploader  # noqa: E402
from directchat.services.conversation_index import ConversationIndex  # noqa: E402
from directchat.services.dependencies import (  # noqa: E402
    get_change_feed,
    get_object_storage,
)
from directchat.services.message_stream import MessageStream  # noqa: E402
from directchat.services.message_writer import MessageWriter  # noqa: E402
from directchat.services.provider import ServiceProvider  # noqa: E402
from directchat.services.realtime_dispatcher import RealtimeDispatcher  # noqa: E402
from tests.test_helpers import FAST_RETRY  # noqa: E402

# A file database per test: concurrent sessions need separate connections
@pytest.fixture(scope="function")
async def db_test_session_manager(
    tmp_path,
) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture
def storage(tmp_path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "media", "/media/chat-images")


@pytest.fixture
async def feed() -> AsyncGenerator[ChangeFeed, None]:
    change_feed = ChangeFeed()
    yield change_feed
    await change_feed.close()


@pytest.fixture
def backend(
    db_test_session_manager: async_sessionmaker[AsyncSession],
    storage: LocalObjectStorage,
    feed: ChangeFeed,
) -> Backend:
    return Backend(db_test_session_manager, storage, feed)


@pytest.fixture
def writer(backend: Backend) -> MessageWriter:
    return MessageWriter(backend, **FAST_RETRY)


@pytest.fixture
def uploader(backend: Backend) -> AttachmentUploader:
    return AttachmentUploader(backend, **FAST_RETRY)


@pytest.fixture
def stream(backend: Backend) -> MessageStream:
    return MessageStream(backend, page_size=50, max_page_size=100)


@pytest.fixture
def index(backend: Backend) -> ConversationIndex:
    return ConversationIndex(backend)


@pytest.fixture
async def dispatcher(backend: Backend) -> AsyncGenerator[RealtimeDispatcher, None]:
    realtime = RealtimeDispatcher(
        backend,
        resolve_attempts=6,
        resolve_initial_delay=0.01,
        resolve_max_delay=0.05,
        resolve_timeout=0.5,
        **FAST_RETRY,
    )
    yield realtime
    await realtime.close()


# Fixture for the FastAPI app with overridden dependencies
@pytest.fixture(scope="function")
def test_app(
    db_test_session_manager: async_sessionmaker[AsyncSession],
    storage: LocalObjectStorage,
    feed: ChangeFeed,
) -> FastAPI:
    ServiceProvider.clear()
    app.dependency_overrides[get_session_maker] = lambda: db_test_session_manager
    app.dependency_overrides[get_object_storage] = lambda: storage
    app.dependency_overrides[get_change_feed] = lambda: feed
    yield app
    app.dependency_overrides.clear()
    ServiceProvider.clear()


@pytest.fixture(scope="function")
async def test_client(test_app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://test",
    ) as client:
        yield client
