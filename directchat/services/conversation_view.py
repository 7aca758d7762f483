import inspect
import logging
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

from directchat.backend.gateway import Backend
from directchat.schemas.message import (
    MessageKind,
    MessageRead,
    PendingMediaPayload,
    TextPayload,
    build_payload,
)

from .attachment_uploader import AttachmentUploader
from .exceptions import ServiceError, ValidationError
from .message_stream import MessageStream
from .message_writer import MessageWriter
from .realtime_dispatcher import RealtimeDispatcher, SubscriptionHandle
from .reconciler import Reconciler, TimelineEntry

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


async def _notify(listener: Optional[Listener], *args) -> None:
    if listener is None:
        return
    result = listener(*args)
    if inspect.isawaitable(result):
        await result


class ConversationView:
    """What one user sees of one conversation while the screen is open.

    Results of in-flight operations are dropped once the view is closed.
    Listeners hear about realtime changes after they are reconciled, and only
    once open() has returned; anything earlier is part of the opened timeline.
    """

    def __init__(
        self,
        user_id: UUID,
        other_user_id: UUID,
        *,
        backend: Backend,
        stream: MessageStream,
        writer: MessageWriter,
        uploader: AttachmentUploader,
        dispatcher: RealtimeDispatcher,
        reconciler: Optional[Reconciler] = None,
        on_insert: Optional[Listener] = None,
        on_delete: Optional[Listener] = None,
        on_lost: Optional[Listener] = None,
    ):
        if user_id == other_user_id:
            raise ValidationError("You cannot open a conversation with yourself.")
        self.user_id = user_id
        self.other_user_id = other_user_id
        self.backend = backend
        self.stream = stream
        self.writer = writer
        self.uploader = uploader
        self.dispatcher = dispatcher
        self.reconciler = reconciler or Reconciler()
        self.on_insert = on_insert
        self.on_delete = on_delete
        self.on_lost = on_lost
        self.has_more = False
        self._next_before: Optional[datetime] = None
        self._handle: Optional[SubscriptionHandle] = None
        self._opened = False
        self._closed = False

    @property
    def live(self) -> bool:
        return not self._closed

    def entries(self) -> list[TimelineEntry]:
        return self.reconciler.entries()

    def messages(self) -> list[MessageRead]:
        return self.reconciler.messages()

    async def _on_insert(self, message: MessageRead) -> None:
        if not self.live:
            return
        entry = self.reconciler.apply_realtime(message)
        if entry is not None and entry.message is not None and self._opened:
            await _notify(self.on_insert, entry.message)

    async def _on_delete(self, message_id: UUID) -> None:
        if not self.live:
            return
        self.reconciler.apply_delete(message_id)
        if self._opened:
            await _notify(self.on_delete, message_id)

    async def _on_lost(self, error: ServiceError) -> None:
        if self.live:
            await _notify(self.on_lost, error)

    async def open(self) -> None:
        """Subscribes, then loads the newest history window.

        Subscribing first means a message stored while history is loading
        arrives on the channel; one seen both ways is merged by id.
        """
        handle = await self.dispatcher.subscribe(
            self.user_id,
            self.other_user_id,
            self._on_insert,
            self._on_delete,
            self._on_lost,
        )
        if not self.live:
            await handle.unsubscribe()
            return
        self._handle = handle

        try:
            page = await self.stream.load_history(self.user_id, self.other_user_id)
        except ServiceError:
            await self.close()
            raise
        if not self.live:
            return
        self.reconciler.load_base(page.messages)
        self.has_more = page.has_more
        self._next_before = page.next_before
        self._opened = True

    async def load_older(self) -> list[MessageRead]:
        if not self.has_more:
            return []
        page = await self.stream.load_history(
            self.user_id, self.other_user_id, before=self._next_before
        )
        if not self.live:
            return []
        self.reconciler.prepend_older(page.messages)
        self.has_more = page.has_more
        self._next_before = page.next_before
        return page.messages

    async def send_text(self, text: str) -> MessageRead:
        content = (text or "").strip()
        if not content:
            raise ValidationError("Message text cannot be empty.")
        client_id = self.reconciler.add_optimistic(
            self.user_id, TextPayload(text=content)
        )
        try:
            message = await self.writer.send(self.user_id, self.other_user_id, content)
        except ServiceError:
            if self.live:
                self.reconciler.discard(client_id)
            raise
        if self.live:
            self.reconciler.confirm(client_id, message)
        return message

    async def send_image(
        self, data: bytes, content_type: str, caption: Optional[str] = None
    ) -> MessageRead:
        caption = (caption or "").strip() or None
        kind = MessageKind.MIXED if caption else MessageKind.IMAGE
        client_id = self.reconciler.add_optimistic(
            self.user_id, PendingMediaPayload(text=caption)
        )

        def stored(image_url: str) -> None:
            # With its url known the entry can absorb the realtime echo
            if self.live:
                self.reconciler.update_optimistic(
                    client_id, build_payload(kind, caption, image_url)
                )

        try:
            message = await self.uploader.send(
                self.user_id,
                self.other_user_id,
                data,
                content_type,
                caption,
                on_stored=stored,
            )
        except ServiceError:
            if self.live:
                self.reconciler.discard(client_id)
            raise
        if self.live:
            self.reconciler.confirm(client_id, message)
        return message

    async def _mark_one(self, message: MessageRead) -> Optional[MessageRead]:
        for attempt in (1, 2):
            try:
                return await self.backend.mark_read(message.id, self.user_id)
            except ServiceError as e:
                logger.warning(
                    f"Marking message {message.id} read failed (attempt {attempt}): {e}"
                )
        return None

    async def mark_read(self) -> int:
        """Marks every visible unread message addressed to this user. Never raises."""
        unread = [
            m
            for m in self.reconciler.messages()
            if m.recipient_id == self.user_id and not m.is_read
        ]
        marked = 0
        for message in unread:
            updated = await self._mark_one(message)
            if updated is None or not self.live:
                continue
            self.reconciler.apply_realtime(message.model_copy(update={"is_read": True}))
            marked += 1
        return marked

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._handle is not None:
            await self._handle.unsubscribe()
            self._handle = None
        self.reconciler.close()
