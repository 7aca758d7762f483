import asyncio
import enum
import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Set
from uuid import UUID

from directchat.backend.feed import FeedEvent, FeedEventType, FeedSubscription
from directchat.backend.gateway import Backend
from directchat.core.clock import utcnow
from directchat.core.config import settings
from directchat.core.pairing import pair_key
from directchat.core.retry import backoff_delays, retry_async
from directchat.schemas.message import MessageRead

from .exceptions import NetworkError, ServiceError, SubscriptionLost
from .message_stream import MessageStream

logger = logging.getLogger(__name__)

InsertCallback = Callable[[MessageRead], Any]
DeleteCallback = Callable[[UUID], Any]
LostCallback = Callable[[ServiceError], Any]


async def _call(callback: Callable, *args) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class HandleState(str, enum.Enum):
    IDLE = "idle"
    SUBSCRIBED = "subscribed"
    TORN_DOWN = "torn_down"


class SubscriptionHandle:
    """One consumer attached to a conversation's shared realtime channel."""

    def __init__(
        self,
        dispatcher: "RealtimeDispatcher",
        pair_key: str,
        on_insert: InsertCallback,
        on_delete: Optional[DeleteCallback] = None,
        on_lost: Optional[LostCallback] = None,
    ):
        self.dispatcher = dispatcher
        self.pair_key = pair_key
        self.on_insert = on_insert
        self.on_delete = on_delete
        self.on_lost = on_lost
        self.state = HandleState.IDLE
        # id -> True while only the pending-media form has been delivered
        self._delivered: Dict[UUID, bool] = {}

    @property
    def is_active(self) -> bool:
        return self.state == HandleState.SUBSCRIBED

    async def deliver(self, message: MessageRead) -> None:
        if not self.is_active:
            return
        pending = self._delivered.get(message.id)
        if pending is False or (pending and message.is_pending_media):
            return
        self._delivered[message.id] = message.is_pending_media
        try:
            await _call(self.on_insert, message)
        except Exception as e:
            logger.error(
                f"Insert callback failed for message {message.id}: {e}", exc_info=True
            )

    async def deliver_delete(self, message_id: UUID) -> None:
        if not self.is_active or self.on_delete is None:
            return
        try:
            await _call(self.on_delete, message_id)
        except Exception as e:
            logger.error(
                f"Delete callback failed for message {message_id}: {e}", exc_info=True
            )

    async def notify_lost(self, error: ServiceError) -> None:
        self.state = HandleState.TORN_DOWN
        if self.on_lost is None:
            return
        try:
            await _call(self.on_lost, error)
        except Exception as e:
            logger.error(f"Lost callback failed on {self.pair_key}: {e}", exc_info=True)

    async def unsubscribe(self) -> None:
        """Stops delivery immediately. Safe to call more than once."""
        if self.state == HandleState.TORN_DOWN:
            return
        self.state = HandleState.TORN_DOWN
        await self.dispatcher._detach(self)


class _Channel:
    """The single backend subscription for one pair key, shared by its handles."""

    def __init__(self, dispatcher: "RealtimeDispatcher", user_a: UUID, user_b: UUID):
        self.dispatcher = dispatcher
        self.backend = dispatcher.backend
        self.participants = (user_a, user_b)
        self.pair_key = pair_key(user_a, user_b)
        self.handles: list[SubscriptionHandle] = []
        self.subscription: Optional[FeedSubscription] = None
        self.watermark: datetime = utcnow()
        self.closed = False
        self._lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()

    async def open(self) -> None:
        self.subscription = await self.backend.subscribe(
            self.pair_key, self._on_event, self._on_lost
        )
        logger.info(f"Realtime channel opened on {self.pair_key}")

    async def close(self) -> None:
        self.closed = True
        if self.subscription is not None:
            await self.backend.unsubscribe(self.subscription)
            self.subscription = None
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()
        logger.info(f"Realtime channel closed on {self.pair_key}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _on_event(self, event: FeedEvent) -> None:
        if self.closed:
            return
        async with self._lock:
            if event.type == FeedEventType.DELETE:
                for handle in list(self.handles):
                    await handle.deliver_delete(event.message_id)
                return
            await self._deliver(event.message)

    async def _deliver(self, message: MessageRead) -> None:
        if message.created_at > self.watermark:
            self.watermark = message.created_at
        if message.is_pending_media:
            message = await self.dispatcher.resolve_attachment(message)
            if message.is_pending_media:
                self._spawn(self._retry_resolution(message))
        for handle in list(self.handles):
            await handle.deliver(message)

    async def _retry_resolution(self, message: MessageRead) -> None:
        """One late attempt for media still unresolved after the timeout."""
        await asyncio.sleep(self.dispatcher.resolve_max_delay)
        resolved = await self.dispatcher.resolve_attachment(message, attempts=1)
        if resolved.is_pending_media or self.closed:
            return
        async with self._lock:
            for handle in list(self.handles):
                await handle.deliver(resolved)

    async def _on_lost(self, error: SubscriptionLost) -> None:
        if self.closed:
            return
        logger.warning(f"Realtime channel on {self.pair_key} lost: {error}")
        self.subscription = None
        self._spawn(self._recover())

    async def _recover(self) -> None:
        """Resubscribes, then fills the gap since the last message seen."""
        async with self._lock:
            try:
                await retry_async(
                    self.open,
                    attempts=self.dispatcher.retry_attempts,
                    initial_delay=self.dispatcher.retry_initial_delay,
                    max_delay=self.dispatcher.retry_max_delay,
                    retry_on=(NetworkError,),
                    description=f"Resubscribing to {self.pair_key}",
                )
                missed = await retry_async(
                    lambda: self.dispatcher.stream.messages_since(
                        *self.participants, self.watermark
                    ),
                    attempts=self.dispatcher.retry_attempts,
                    initial_delay=self.dispatcher.retry_initial_delay,
                    max_delay=self.dispatcher.retry_max_delay,
                    retry_on=(NetworkError,),
                    description=f"Refetching {self.pair_key}",
                )
            except ServiceError as e:
                logger.error(f"Could not recover channel {self.pair_key}: {e}")
                await self.dispatcher._abandon(self, e)
                return
            if self.closed:
                return
            logger.info(
                f"Channel {self.pair_key} recovered; replaying {len(missed)} message(s)"
            )
            for message in missed:
                await self._deliver(message)


class RealtimeDispatcher:
    """Reference-counted realtime subscriptions, one backend channel per pair."""

    def __init__(
        self,
        backend: Backend,
        stream: Optional[MessageStream] = None,
        resolve_attempts: int = settings.ATTACHMENT_RESOLVE_ATTEMPTS,
        resolve_initial_delay: float = settings.ATTACHMENT_RESOLVE_INITIAL_DELAY,
        resolve_max_delay: float = settings.ATTACHMENT_RESOLVE_MAX_DELAY,
        resolve_timeout: float = settings.ATTACHMENT_RESOLVE_TIMEOUT,
        retry_attempts: int = settings.SEND_RETRY_ATTEMPTS,
        retry_initial_delay: float = settings.RETRY_INITIAL_DELAY,
        retry_max_delay: float = settings.RETRY_MAX_DELAY,
    ):
        self.backend = backend
        # Gap fill reads through the stream so it hides what history hides
        self.stream = stream or MessageStream(backend)
        self.resolve_attempts = resolve_attempts
        self.resolve_initial_delay = resolve_initial_delay
        self.resolve_max_delay = resolve_max_delay
        self.resolve_timeout = resolve_timeout
        self.retry_attempts = retry_attempts
        self.retry_initial_delay = retry_initial_delay
        self.retry_max_delay = retry_max_delay
        self._channels: Dict[str, _Channel] = {}
        self._lock = asyncio.Lock()

    async def subscribe(
        self,
        user_a: UUID,
        user_b: UUID,
        on_insert: InsertCallback,
        on_delete: Optional[DeleteCallback] = None,
        on_lost: Optional[LostCallback] = None,
    ) -> SubscriptionHandle:
        """Attaches a consumer to the conversation between `user_a` and `user_b`."""
        key = pair_key(user_a, user_b)
        handle = SubscriptionHandle(self, key, on_insert, on_delete, on_lost)
        async with self._lock:
            channel = self._channels.get(key)
            if channel is None:
                channel = _Channel(self, user_a, user_b)
                await channel.open()
                self._channels[key] = channel
            channel.handles.append(handle)
            handle.state = HandleState.SUBSCRIBED
        logger.debug(f"Handle attached to {key} ({len(channel.handles)} active)")
        return handle

    async def _detach(self, handle: SubscriptionHandle) -> None:
        async with self._lock:
            channel = self._channels.get(handle.pair_key)
            if channel is None:
                return
            if handle in channel.handles:
                channel.handles.remove(handle)
            if not channel.handles:
                del self._channels[handle.pair_key]
                await channel.close()

    async def _abandon(self, channel: _Channel, error: ServiceError) -> None:
        async with self._lock:
            if self._channels.get(channel.pair_key) is channel:
                del self._channels[channel.pair_key]
        handles = list(channel.handles)
        channel.handles.clear()
        await channel.close()
        for handle in handles:
            await handle.notify_lost(error)

    def active_handles(self, user_a: UUID, user_b: UUID) -> int:
        channel = self._channels.get(pair_key(user_a, user_b))
        return len(channel.handles) if channel else 0

    async def resolve_attachment(
        self, message: MessageRead, attempts: Optional[int] = None
    ) -> MessageRead:
        """Polls for the attachment of a media message with backoff.

        Returns the message unchanged (still pending) when it cannot be
        resolved within the attempts or the overall timeout.
        """
        attempts = attempts or self.resolve_attempts

        async def poll() -> Optional[str]:
            delays = backoff_delays(
                attempts, self.resolve_initial_delay, self.resolve_max_delay
            )
            while True:
                try:
                    attachment = await self.backend.get_attachment(message.id)
                    if attachment is not None:
                        return attachment.image_url
                except NetworkError as e:
                    logger.info(f"Attachment lookup for {message.id} failed: {e}")
                delay = next(delays, None)
                if delay is None:
                    return None
                await asyncio.sleep(delay)

        try:
            image_url = await asyncio.wait_for(poll(), timeout=self.resolve_timeout)
        except asyncio.TimeoutError:
            image_url = None
        if image_url is None:
            logger.warning(f"Attachment for message {message.id} not resolved yet")
            return message
        return message.with_attachment(image_url)

    async def close(self) -> None:
        async with self._lock:
            channels = list(self._channels.values())
            self._channels.clear()
        for channel in channels:
            for handle in channel.handles:
                handle.state = HandleState.TORN_DOWN
            await channel.close()
