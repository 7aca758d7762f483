import asyncio
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from directchat.backend.feed import ChangeFeed, FeedEvent, FeedEventType
from directchat.backend.gateway import Backend
from directchat.backend.storage import LocalObjectStorage
from directchat.core.pairing import pair_key
from directchat.models import Conversation
from directchat.schemas.message import ImagePayload, MessageKind, PendingMediaPayload
from directchat.services.exceptions import (
    MessageNotFoundError,
    NetworkError,
    NotAuthorizedError,
)
from tests.test_helpers import create_test_profile, seconds_ago, settle

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio


async def test_create_message_creates_conversation_lazily(
    backend: Backend, db_test_session_manager: async_sessionmaker[AsyncSession]
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)
    assert await backend.get_conversation(key) is None

    message = await backend.create_message(alice, bob, "Hola")

    conversation = await backend.get_conversation(key)
    assert conversation is not None
    assert conversation.pair_key == key
    assert {conversation.participant_a, conversation.participant_b} == {alice, bob}
    assert conversation.last_message_at == message.created_at
    assert message.content == "Hola"
    assert message.is_read is False


async def test_conversation_is_shared_by_both_directions(
    backend: Backend, db_test_session_manager: async_sessionmaker[AsyncSession]
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    await asyncio.gather(
        backend.create_message(alice, bob, "hi bob"),
        backend.create_message(bob, alice, "hi alice"),
    )

    async with db_test_session_manager() as session:
        count = await session.scalar(select(func.count(Conversation.id)))
    assert count == 1

    messages, has_more = await backend.list_messages(pair_key(bob, alice), limit=10)
    assert len(messages) == 2
    assert has_more is False


async def test_last_message_at_follows_latest_message(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    await backend.create_message(alice, bob, "first")
    latest = await backend.create_message(bob, alice, "second")

    conversation = await backend.get_conversation(pair_key(alice, bob))
    assert conversation.last_message_at == latest.created_at


async def test_list_messages_is_monotonic_and_paginates(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    sent = [await backend.create_message(alice, bob, f"m{i}") for i in range(7)]
    key = pair_key(alice, bob)

    newest, has_more = await backend.list_messages(key, limit=3)
    assert [m.content for m in newest] == ["m4", "m5", "m6"]
    assert has_more is True

    older, has_more = await backend.list_messages(
        key, before=newest[0].created_at, limit=3
    )
    assert [m.content for m in older] == ["m1", "m2", "m3"]
    assert has_more is True

    oldest, has_more = await backend.list_messages(
        key, before=older[0].created_at, limit=3
    )
    assert [m.content for m in oldest] == ["m0"]
    assert has_more is False

    everything, _ = await backend.list_messages(key, limit=50)
    stamps = [m.created_at for m in everything]
    assert stamps == sorted(stamps)
    assert [m.id for m in everything] == [m.id for m in sent]


async def test_list_messages_since(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    first = await backend.create_message(alice, bob, "one")
    second = await backend.create_message(bob, alice, "two")

    since = await backend.list_messages_since(pair_key(alice, bob), first.created_at)
    assert [m.id for m in since] == [second.id]


async def test_image_message_is_pending_until_attachment_exists(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    message = await backend.create_message(alice, bob, None, MessageKind.IMAGE)
    assert isinstance(message.payload, PendingMediaPayload)
    assert await backend.get_attachment(message.id) is None

    await backend.create_attachment(message.id, "/media/chat-images/x.png", alice)

    stored = await backend.get_message(message.id)
    assert stored.payload == ImagePayload(url="/media/chat-images/x.png")
    assert stored.content is None


async def test_create_attachment_for_missing_message(backend: Backend):
    with pytest.raises(MessageNotFoundError):
        await backend.create_attachment(uuid.uuid4(), "/x.png", uuid.uuid4())


async def test_mark_read_is_idempotent(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    message = await backend.create_message(alice, bob, "read me")

    first = await backend.mark_read(message.id, bob)
    second = await backend.mark_read(message.id, bob)

    assert first.is_read is True
    assert second.is_read is True
    assert await backend.count_unread(bob) == 0


async def test_mark_read_rejects_non_recipient(backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    message = await backend.create_message(alice, bob, "not yours")

    with pytest.raises(NotAuthorizedError):
        await backend.mark_read(message.id, alice)
    with pytest.raises(MessageNotFoundError):
        await backend.mark_read(uuid.uuid4(), bob)

    stored = await backend.get_message(message.id)
    assert stored.is_read is False


async def test_unread_counts(backend: Backend):
    alice, bob, carol = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    await backend.create_message(alice, bob, "1")
    await backend.create_message(alice, bob, "2")
    await backend.create_message(carol, bob, "3")
    await backend.create_message(bob, alice, "reply")

    assert await backend.count_unread(bob) == 3
    assert await backend.count_unread(bob, pair_key(alice, bob)) == 2
    assert await backend.count_unread_by_pair(bob) == {
        pair_key(alice, bob): 2,
        pair_key(carol, bob): 1,
    }
    assert await backend.count_unread(alice) == 1


async def test_list_conversations_orders_by_recent_activity(backend: Backend):
    me, old_friend, new_friend = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    await backend.create_message(me, old_friend, "earlier")
    await backend.create_message(new_friend, me, "later")

    conversations = await backend.list_conversations(me)
    assert [c.pair_key for c in conversations] == [
        pair_key(me, new_friend),
        pair_key(me, old_friend),
    ]
    assert await backend.list_conversations(uuid.uuid4()) == []


async def test_delete_message_publishes_delete(backend: Backend, feed: ChangeFeed):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)
    events: list[FeedEvent] = []
    await backend.subscribe(key, events.append)

    message = await backend.create_message(alice, bob, "oops")
    assert await backend.delete_message(message.id) is True
    assert await backend.delete_message(message.id) is False
    await settle()

    assert [e.type for e in events] == [FeedEventType.INSERT, FeedEventType.DELETE]
    assert events[1].message_id == message.id
    assert await backend.get_message(message.id) is None


async def test_purge_orphaned_messages(backend: Backend, feed: ChangeFeed):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)
    orphan = await backend.create_message(alice, bob, None, MessageKind.IMAGE)
    linked = await backend.create_message(alice, bob, "caption", MessageKind.MIXED)
    await backend.create_attachment(linked.id, "/media/chat-images/ok.png", alice)
    text = await backend.create_message(alice, bob, "plain")

    events: list[FeedEvent] = []
    await backend.subscribe(key, events.append)

    # Nothing is old enough yet
    assert await backend.purge_orphaned_messages(seconds_ago(60)) == 0

    purged = await backend.purge_orphaned_messages(seconds_ago(-1))
    await settle()

    assert purged == 1
    assert await backend.get_message(orphan.id) is None
    assert await backend.get_message(linked.id) is not None
    assert await backend.get_message(text.id) is not None
    assert [(e.type, e.message_id) for e in events] == [
        (FeedEventType.DELETE, orphan.id)
    ]


async def test_resolve_profiles_returns_known_profiles(
    backend: Backend, db_test_session_manager: async_sessionmaker[AsyncSession]
):
    known = await create_test_profile(
        db_test_session_manager, first_name="Ana", last_name="Ruiz"
    )
    profiles = await backend.resolve_profiles([known.id, uuid.uuid4(), known.id])

    assert len(profiles) == 1
    assert profiles[0].display_name == "Ana Ruiz"


async def test_driver_failures_become_network_errors(tmp_path, storage: LocalObjectStorage):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nested' / 'db.sqlite'}",
        poolclass=NullPool,
    )
    broken = Backend(
        async_sessionmaker(engine, expire_on_commit=False), storage, ChangeFeed()
    )

    with pytest.raises(NetworkError):
        await broken.create_message(uuid.uuid4(), uuid.uuid4(), "hello")
    with pytest.raises(NetworkError):
        await broken.list_messages("a:b", limit=10)

    await engine.dispose()
