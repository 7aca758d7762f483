import uuid

import pytest

from directchat.backend.gateway import Backend
from directchat.core.pairing import pair_key
from directchat.services.exceptions import ConversationNotFoundError, ValidationError
from directchat.services.message_writer import MessageWriter
from directchat.services.report_service import ReportService

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio


async def test_report_existing_conversation(backend: Backend, writer: MessageWriter):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    await writer.send(bob, alice, "rude message")

    report = await ReportService(backend).report_conversation(alice, bob, "  harassment ")

    conversation = await backend.get_conversation(pair_key(alice, bob))
    assert report.conversation_id == conversation.id
    assert report.reporter_id == alice
    assert report.reported_user_id == bob
    assert report.reason == "harassment"


async def test_report_without_conversation(backend: Backend):
    with pytest.raises(ConversationNotFoundError):
        await ReportService(backend).report_conversation(
            uuid.uuid4(), uuid.uuid4(), "spam"
        )


@pytest.mark.parametrize("reason", ["", "   "])
async def test_report_requires_reason(backend: Backend, reason: str):
    with pytest.raises(ValidationError):
        await ReportService(backend).report_conversation(
            uuid.uuid4(), uuid.uuid4(), reason
        )


async def test_cannot_report_self(backend: Backend):
    me = uuid.uuid4()
    with pytest.raises(ValidationError):
        await ReportService(backend).report_conversation(me, me, "spam")
