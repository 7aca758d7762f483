import asyncio
import uuid

import pytest

from directchat.backend.feed import ChangeFeed
from directchat.backend.gateway import Backend
from directchat.core.pairing import pair_key
from directchat.schemas.message import (
    ImagePayload,
    MessageKind,
    MessageRead,
    PendingMediaPayload,
)
from directchat.services.message_stream import MessageStream
from directchat.services.message_writer import MessageWriter
from directchat.services.realtime_dispatcher import HandleState, RealtimeDispatcher
from tests.test_helpers import FAST_RETRY, settle, wait_until

pytestmark = pytest.mark.asyncio


async def test_handles_share_one_backend_subscription(
    dispatcher: RealtimeDispatcher, feed: ChangeFeed
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)

    first = await dispatcher.subscribe(alice, bob, lambda m: None)
    second = await dispatcher.subscribe(bob, alice, lambda m: None)
    assert feed.subscriber_count(key) == 1
    assert dispatcher.active_handles(alice, bob) == 2
    assert first.state == HandleState.SUBSCRIBED

    await first.unsubscribe()
    assert first.state == HandleState.TORN_DOWN
    assert feed.subscriber_count(key) == 1

    await second.unsubscribe()
    await second.unsubscribe()
    assert feed.subscriber_count(key) == 0
    assert dispatcher.active_handles(alice, bob) == 0


async def test_each_handle_gets_each_insert_once_in_order(
    dispatcher: RealtimeDispatcher, writer: MessageWriter
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    for_alice: list[MessageRead] = []
    for_bob: list[MessageRead] = []
    await dispatcher.subscribe(alice, bob, for_alice.append)
    await dispatcher.subscribe(bob, alice, for_bob.append)

    msg1 = await writer.send(alice, bob, "msg1")
    msg2 = await writer.send(alice, bob, "msg2")
    await wait_until(lambda: len(for_bob) == 2 and len(for_alice) == 2)
    await settle()

    assert [m.id for m in for_bob] == [msg1.id, msg2.id]
    assert [m.id for m in for_alice] == [msg1.id, msg2.id]


async def test_other_conversations_are_not_delivered(
    dispatcher: RealtimeDispatcher, writer: MessageWriter
):
    alice, bob, carol = uuid.uuid4(), uuid.uuid4(), uuid.uuid4()
    received: list[MessageRead] = []
    await dispatcher.subscribe(alice, bob, received.append)

    await writer.send(alice, carol, "not for bob's view")
    await settle()

    assert received == []


async def test_unsubscribe_halts_delivery(
    dispatcher: RealtimeDispatcher, writer: MessageWriter
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    received: list[MessageRead] = []
    handle = await dispatcher.subscribe(bob, alice, received.append)

    await writer.send(alice, bob, "before")
    await wait_until(lambda: len(received) == 1)
    await handle.unsubscribe()
    await writer.send(alice, bob, "after")
    await settle()

    assert [m.content for m in received] == ["before"]


async def test_late_attachment_is_resolved_before_delivery(
    dispatcher: RealtimeDispatcher, backend: Backend
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    received: list[MessageRead] = []
    await dispatcher.subscribe(bob, alice, received.append)

    message = await backend.create_message(alice, bob, None, MessageKind.IMAGE)
    await asyncio.sleep(0.02)
    await backend.create_attachment(message.id, "/media/chat-images/late.png", alice)
    await wait_until(lambda: len(received) == 1)
    await settle()

    assert len(received) == 1
    assert received[0].payload == ImagePayload(url="/media/chat-images/late.png")


async def test_unresolved_media_is_delivered_pending_then_updated(backend: Backend):
    # Gives up quickly, then retries once after resolve_max_delay
    dispatcher = RealtimeDispatcher(
        backend,
        resolve_attempts=2,
        resolve_initial_delay=0.01,
        resolve_max_delay=0.3,
        resolve_timeout=0.5,
    )
    alice, bob = uuid.uuid4(), uuid.uuid4()
    received: list[MessageRead] = []
    await dispatcher.subscribe(bob, alice, received.append)

    message = await backend.create_message(alice, bob, "caption", MessageKind.MIXED)
    await wait_until(lambda: len(received) == 1)
    assert isinstance(received[0].payload, PendingMediaPayload)
    assert received[0].content == "caption"

    await backend.create_attachment(message.id, "/media/chat-images/slow.png", alice)
    await wait_until(lambda: len(received) == 2)

    assert received[1].id == message.id
    assert received[1].image_url == "/media/chat-images/slow.png"
    assert received[1].content == "caption"
    await dispatcher.close()


async def test_deletes_are_forwarded(dispatcher: RealtimeDispatcher, backend: Backend):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    deleted: list[uuid.UUID] = []
    await dispatcher.subscribe(bob, alice, lambda m: None, deleted.append)

    message = await backend.create_message(alice, bob, "regret")
    await backend.delete_message(message.id)
    await wait_until(lambda: deleted == [message.id])


async def test_lost_subscription_recovers_without_gaps_or_duplicates(
    dispatcher: RealtimeDispatcher, writer: MessageWriter, feed: ChangeFeed
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)
    received: list[MessageRead] = []
    await dispatcher.subscribe(bob, alice, received.append)

    first = await writer.send(alice, bob, "before the drop")
    await wait_until(lambda: len(received) == 1)

    await feed.drop(key, "connection reset")
    # Sent while the channel is down; recovered by the refetch
    missed = await writer.send(alice, bob, "during the drop")
    await wait_until(lambda: feed.subscriber_count(key) == 1)
    after = await writer.send(alice, bob, "after recovery")
    await wait_until(lambda: len(received) >= 3)
    await settle()

    assert [m.id for m in received] == [first.id, missed.id, after.id]


async def test_handle_callback_errors_do_not_stop_delivery(
    dispatcher: RealtimeDispatcher, writer: MessageWriter
):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    received: list[MessageRead] = []

    def explode(message: MessageRead) -> None:
        raise RuntimeError("view crashed")

    await dispatcher.subscribe(alice, bob, explode)
    await dispatcher.subscribe(bob, alice, received.append)

    await writer.send(alice, bob, "still arrives")
    await wait_until(lambda: len(received) == 1)


class GatedBackend:
    """Holds subscribe calls until `gate` is set; everything else passes through."""

    def __init__(self, backend: Backend):
        self._backend = backend
        self.gate = asyncio.Event()
        self.gate.set()

    def __getattr__(self, name):
        return getattr(self._backend, name)

    async def subscribe(self, *args, **kwargs):
        await self.gate.wait()
        return await self._backend.subscribe(*args, **kwargs)


async def test_gap_fill_hides_what_history_hides(backend: Backend, feed: ChangeFeed):
    gated = GatedBackend(backend)
    # Every unresolved media message counts as a stale orphan
    dispatcher = RealtimeDispatcher(
        gated, stream=MessageStream(backend, attachment_timeout=0), **FAST_RETRY
    )
    alice, bob = uuid.uuid4(), uuid.uuid4()
    key = pair_key(alice, bob)
    received: list[MessageRead] = []
    await dispatcher.subscribe(bob, alice, received.append)

    gated.gate.clear()
    await feed.drop(key, "connection reset")
    orphan = await backend.create_message(alice, bob, None, MessageKind.IMAGE)
    kept = await backend.create_message(alice, bob, "written while offline")
    gated.gate.set()

    await wait_until(lambda: len(received) == 1)
    await settle()

    assert [m.id for m in received] == [kept.id]
    assert orphan.id not in {m.id for m in received}
    await dispatcher.close()
