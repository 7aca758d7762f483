import asyncio
import enum
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from directchat.schemas.message import MessageRead
from directchat.services.exceptions import SubscriptionLost

logger = logging.getLogger(__name__)


class FeedEventType(str, enum.Enum):
    INSERT = "insert"
    DELETE = "delete"


@dataclass(frozen=True)
class FeedEvent:
    type: FeedEventType
    pair_key: str
    message_id: UUID
    # Only set for inserts
    message: Optional[MessageRead] = None

    @classmethod
    def insert(cls, pair_key: str, message: MessageRead) -> "FeedEvent":
        return cls(FeedEventType.INSERT, pair_key, message.id, message)

    @classmethod
    def delete(cls, pair_key: str, message_id: UUID) -> "FeedEvent":
        return cls(FeedEventType.DELETE, pair_key, message_id)


EventCallback = Callable[[FeedEvent], Any]
LostCallback = Callable[[SubscriptionLost], Any]

_STOP = object()


async def _maybe_await(result: Any) -> None:
    if inspect.isawaitable(result):
        await result


class FeedSubscription:
    """One listener on one pair key, drained in publish order by its own task."""

    _ids = itertools.count(1)

    def __init__(
        self,
        pair_key: str,
        on_event: EventCallback,
        on_lost: Optional[LostCallback] = None,
    ):
        self.id = next(self._ids)
        self.pair_key = pair_key
        self.on_event = on_event
        self.on_lost = on_lost
        self.active = True
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task = asyncio.create_task(
            self._drain(), name=f"feed-{pair_key}-{self.id}"
        )

    def push(self, event: FeedEvent) -> None:
        if self.active:
            self._queue.put_nowait(event)

    async def _drain(self) -> None:
        while True:
            event = await self._queue.get()
            if event is _STOP or not self.active:
                return
            try:
                await _maybe_await(self.on_event(event))
            except Exception as e:
                logger.error(
                    f"Feed listener {self.id} on {self.pair_key} failed: {e}",
                    exc_info=True,
                )

    def stop(self) -> None:
        """Stops delivery. Events already queued are discarded."""
        if not self.active:
            return
        self.active = False
        self._queue.put_nowait(_STOP)

    async def wait_closed(self) -> None:
        await asyncio.gather(self._task, return_exceptions=True)


class ChangeFeed:
    """In-process publish/subscribe feed of message inserts and deletes.

    Subscribers of a pair key receive its events in publish order.
    """

    def __init__(self):
        self._subscriptions: Dict[str, List[FeedSubscription]] = {}

    def subscribe(
        self,
        pair_key: str,
        on_event: EventCallback,
        on_lost: Optional[LostCallback] = None,
    ) -> FeedSubscription:
        subscription = FeedSubscription(pair_key, on_event, on_lost)
        self._subscriptions.setdefault(pair_key, []).append(subscription)
        logger.debug(f"Feed subscription {subscription.id} opened on {pair_key}")
        return subscription

    def unsubscribe(self, subscription: FeedSubscription) -> None:
        subscription.stop()
        listeners = self._subscriptions.get(subscription.pair_key, [])
        if subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            self._subscriptions.pop(subscription.pair_key, None)
        logger.debug(
            f"Feed subscription {subscription.id} closed on {subscription.pair_key}"
        )

    def publish(self, event: FeedEvent) -> None:
        for subscription in list(self._subscriptions.get(event.pair_key, [])):
            subscription.push(event)

    def subscriber_count(self, pair_key: str) -> int:
        return len(self._subscriptions.get(pair_key, []))

    async def drop(self, pair_key: str, reason: str = "Realtime channel closed.") -> None:
        """Severs every subscription on `pair_key` and notifies their owners."""
        for subscription in list(self._subscriptions.get(pair_key, [])):
            self.unsubscribe(subscription)
            if subscription.on_lost is not None:
                try:
                    await _maybe_await(subscription.on_lost(SubscriptionLost(reason)))
                except Exception as e:
                    logger.error(
                        f"Lost-subscription handler {subscription.id} failed: {e}",
                        exc_info=True,
                    )

    async def close(self) -> None:
        subscriptions = [s for subs in self._subscriptions.values() for s in subs]
        for subscription in subscriptions:
            self.unsubscribe(subscription)
        await asyncio.gather(
            *(s.wait_closed() for s in subscriptions), return_exceptions=True
        )
