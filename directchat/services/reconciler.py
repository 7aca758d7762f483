import itertools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from directchat.core.clock import utcnow
from directchat.core.config import settings
from directchat.schemas.message import MessagePayload, MessageRead, payload_key

logger = logging.getLogger(__name__)


@dataclass
class TimelineEntry:
    """A row of a conversation view: either a local optimistic send or a stored message."""

    id: UUID
    sender_id: UUID
    payload: MessagePayload
    created_at: datetime
    seq: int
    # Set for entries that started as a local send
    client_id: Optional[UUID] = None
    message: Optional[MessageRead] = field(default=None, repr=False)

    @property
    def optimistic(self) -> bool:
        return self.message is None


class Reconciler:
    """Merges history, local sends and realtime arrivals into one ordered list.

    Entries are keyed by message id. A realtime echo of a local send replaces
    the optimistic entry instead of being appended next to it. After close()
    every mutation is ignored.
    """

    def __init__(self, dedup_window: float = settings.DEDUP_WINDOW_SECONDS):
        self.dedup_window = timedelta(seconds=dedup_window)
        self.closed = False
        self._entries: list[TimelineEntry] = []
        # Deleted ids stay gone even if an older history page still carries them
        self._removed: set[UUID] = set()
        self._seq = itertools.count()

    def entries(self) -> list[TimelineEntry]:
        return sorted(self._entries, key=lambda e: (e.created_at, e.seq))

    def messages(self) -> list[MessageRead]:
        """Only the entries confirmed by the backend, in display order."""
        return [e.message for e in self.entries() if e.message is not None]

    def _find(self, entry_id: UUID) -> Optional[TimelineEntry]:
        return next((e for e in self._entries if e.id == entry_id), None)

    def _find_client(self, client_id: UUID) -> Optional[TimelineEntry]:
        return next((e for e in self._entries if e.client_id == client_id), None)

    def _match_optimistic(self, message: MessageRead) -> Optional[TimelineEntry]:
        key = payload_key(message.payload)
        if key is None:
            return None
        for entry in sorted(self._entries, key=lambda e: e.seq):
            if (
                entry.optimistic
                and entry.sender_id == message.sender_id
                and payload_key(entry.payload) == key
                and abs(message.created_at - entry.created_at) <= self.dedup_window
            ):
                return entry
        return None

    @staticmethod
    def _settle(entry: TimelineEntry, message: MessageRead) -> None:
        entry.id = message.id
        entry.sender_id = message.sender_id
        entry.payload = message.payload
        entry.created_at = message.created_at
        entry.message = message

    def _merge(self, message: MessageRead) -> Optional[TimelineEntry]:
        """Returns the entry that now shows `message`, or None if it was ignored."""
        if message.id in self._removed:
            return None
        existing = self._find(message.id) or self._match_optimistic(message)
        if existing is not None:
            downgrade = (
                existing.message is not None
                and message.is_pending_media
                and not existing.message.is_pending_media
            )
            if downgrade or existing.message == message:
                return None
            self._settle(existing, message)
            return existing
        entry = TimelineEntry(
            id=message.id,
            sender_id=message.sender_id,
            payload=message.payload,
            created_at=message.created_at,
            seq=next(self._seq),
            message=message,
        )
        self._entries.append(entry)
        return entry

    def load_base(self, messages: Iterable[MessageRead]) -> None:
        if self.closed:
            return
        for message in messages:
            self._merge(message)

    def prepend_older(self, messages: Iterable[MessageRead]) -> None:
        """Merges an older history page. Ordering is by created_at, so position is implied."""
        self.load_base(messages)

    def add_optimistic(
        self,
        sender_id: UUID,
        payload: MessagePayload,
        created_at: Optional[datetime] = None,
    ) -> Optional[UUID]:
        """Shows a local send immediately. Returns its client id."""
        if self.closed:
            return None
        client_id = uuid.uuid4()
        self._entries.append(
            TimelineEntry(
                id=client_id,
                sender_id=sender_id,
                payload=payload,
                created_at=created_at or utcnow(),
                seq=next(self._seq),
                client_id=client_id,
            )
        )
        return client_id

    def update_optimistic(self, client_id: UUID, payload: MessagePayload) -> None:
        if self.closed:
            return
        entry = self._find_client(client_id)
        if entry is not None and entry.optimistic:
            entry.payload = payload

    def confirm(self, client_id: UUID, message: MessageRead) -> None:
        """Replaces the optimistic entry with the stored message."""
        if self.closed:
            return
        entry = self._find_client(client_id)
        if message.id in self._removed:
            # Deleted before the send returned
            if entry is not None and entry.optimistic:
                self._entries.remove(entry)
            return
        echoed = self._find(message.id)
        if echoed is not None and echoed is not entry:
            # The realtime echo got here first
            echoed.client_id = client_id
            if entry is not None:
                self._entries.remove(entry)
            self._settle(echoed, message)
            return
        if entry is None:
            self._merge(message)
            return
        self._settle(entry, message)

    def discard(self, client_id: UUID) -> None:
        if self.closed:
            return
        entry = self._find_client(client_id)
        if entry is not None and entry.optimistic:
            self._entries.remove(entry)

    def apply_realtime(self, message: MessageRead) -> Optional[TimelineEntry]:
        if self.closed:
            return None
        return self._merge(message)

    def apply_delete(self, message_id: UUID) -> None:
        if self.closed:
            return
        self._removed.add(message_id)
        entry = self._find(message_id)
        if entry is not None:
            self._entries.remove(entry)

    def close(self) -> None:
        self.closed = True
        logger.debug(f"Reconciler closed with {len(self._entries)} entries")
