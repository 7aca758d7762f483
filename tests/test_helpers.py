import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from directchat.auth import create_access_token
from directchat.backend.gateway import Backend
from directchat.core.clock import utcnow
from directchat.models import Profile
from directchat.schemas.message import MessageKind, MessageRead, build_payload
from directchat.services.exceptions import NetworkError

# Smallest valid PNG header plus padding; storage never decodes it
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64

# Short delays so retry and resolution paths finish quickly
FAST_RETRY = dict(retry_attempts=3, retry_initial_delay=0.01, retry_max_delay=0.02)


def auth_headers(user_id: UUID) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


async def create_test_profile(
    session_maker: async_sessionmaker[AsyncSession],
    id: Optional[UUID] = None,
    first_name: Optional[str] = "Test",
    last_name: Optional[str] = "User",
    avatar_url: Optional[str] = None,
) -> Profile:
    """Inserts a Profile row with default values for testing."""
    profile = Profile(
        id=id or uuid.uuid4(),
        first_name=first_name,
        last_name=last_name,
        avatar_url=avatar_url,
    )
    async with session_maker() as session:
        session.add(profile)
        await session.commit()
    return profile


def make_message(
    sender_id: UUID,
    recipient_id: UUID,
    content: Optional[str] = "hello",
    *,
    kind: MessageKind = MessageKind.TEXT,
    image_url: Optional[str] = None,
    created_at: Optional[datetime] = None,
    id: Optional[UUID] = None,
    is_read: bool = False,
) -> MessageRead:
    """Builds a MessageRead without touching the database."""
    return MessageRead(
        id=id or uuid.uuid4(),
        sender_id=sender_id,
        recipient_id=recipient_id,
        kind=kind,
        payload=build_payload(kind, content, image_url),
        is_read=is_read,
        created_at=created_at or utcnow(),
    )


def seconds_ago(seconds: float) -> datetime:
    return utcnow() - timedelta(seconds=seconds)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Polls `predicate` until it holds; fails the test on timeout."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


async def settle(delay: float = 0.1) -> None:
    """Lets queued feed deliveries run."""
    await asyncio.sleep(delay)


class FlakyBackend:
    """Wraps a Backend and fails chosen operations with NetworkError.

    `failures` maps an operation name to how many calls fail before it
    succeeds; -1 fails forever. Calls are counted in `calls`.
    """

    def __init__(self, backend: Backend, failures: Optional[dict[str, int]] = None):
        self._backend = backend
        self.failures = dict(failures or {})
        self.calls: dict[str, int] = {}

    def __getattr__(self, name):
        target = getattr(self._backend, name)
        if not callable(target):
            return target

        async def call(*args, **kwargs):
            self.calls[name] = self.calls.get(name, 0) + 1
            remaining = self.failures.get(name, 0)
            if remaining:
                if remaining > 0:
                    self.failures[name] = remaining - 1
                raise NetworkError(f"Simulated outage in {name}")
            return await target(*args, **kwargs)

        return call
