import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from directchat.schemas.message import MessageKind
from tests.test_helpers import PNG_BYTES, auth_headers, create_test_profile

# Mark all tests in this module as async
pytestmark = pytest.mark.asyncio


async def test_requires_authentication(test_client: AsyncClient):
    response = await test_client.get("/conversations")
    assert response.status_code == 401

    response = await test_client.get(
        "/conversations", headers={"Authorization": "Bearer not-a-token"}
    )
    assert response.status_code == 401


async def test_session_cookie_is_accepted(test_client: AsyncClient):
    from directchat.auth import COOKIE_NAME, create_access_token

    test_client.cookies.set(COOKIE_NAME, create_access_token(uuid.uuid4()))
    response = await test_client.get("/conversations")

    assert response.status_code == 200
    assert response.json() == []


async def test_send_and_read_history(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()

    response = await test_client.post(
        f"/conversations/{bob}/messages",
        json={"content": "  Hola  "},
        headers=auth_headers(alice),
    )
    assert response.status_code == 201
    sent = response.json()
    assert sent["content"] == "Hola"
    assert sent["payload"] == {"type": "text", "text": "Hola"}
    assert sent["image_url"] is None

    response = await test_client.get(
        f"/conversations/{alice}/messages", headers=auth_headers(bob)
    )
    assert response.status_code == 200
    page = response.json()
    assert [m["id"] for m in page["messages"]] == [sent["id"]]
    assert page["has_more"] is False
    assert page["next_before"] is None


async def test_history_pagination_cursor(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    for i in range(3):
        await test_client.post(
            f"/conversations/{bob}/messages",
            json={"content": f"m{i}"},
            headers=auth_headers(alice),
        )

    first = (
        await test_client.get(
            f"/conversations/{bob}/messages",
            params={"limit": 2},
            headers=auth_headers(alice),
        )
    ).json()
    assert [m["content"] for m in first["messages"]] == ["m1", "m2"]
    assert first["has_more"] is True

    second = (
        await test_client.get(
            f"/conversations/{bob}/messages",
            params={"limit": 2, "before": first["next_before"]},
            headers=auth_headers(alice),
        )
    ).json()
    assert [m["content"] for m in second["messages"]] == ["m0"]
    assert second["has_more"] is False


async def test_blank_message_is_rejected(test_client: AsyncClient):
    response = await test_client.post(
        f"/conversations/{uuid.uuid4()}/messages",
        json={"content": "   "},
        headers=auth_headers(uuid.uuid4()),
    )
    assert response.status_code == 400


async def test_message_to_self_is_rejected(test_client: AsyncClient):
    me = uuid.uuid4()
    response = await test_client.post(
        f"/conversations/{me}/messages",
        json={"content": "hi me"},
        headers=auth_headers(me),
    )
    assert response.status_code == 400


async def test_list_conversations_and_unread(
    test_client: AsyncClient,
    db_test_session_manager: async_sessionmaker[AsyncSession],
):
    host = await create_test_profile(db_test_session_manager, first_name="Hana")
    guest = await create_test_profile(
        db_test_session_manager, first_name="Gus", last_name="Moreno"
    )
    await test_client.post(
        f"/conversations/{host.id}/messages",
        json={"content": "Is the room free?"},
        headers=auth_headers(guest.id),
    )

    response = await test_client.get("/conversations", headers=auth_headers(host.id))
    assert response.status_code == 200
    summaries = response.json()
    assert len(summaries) == 1
    assert summaries[0]["counterpart"]["display_name"] == "Gus Moreno"
    assert summaries[0]["unread_count"] == 1

    response = await test_client.get("/users/me/unread", headers=auth_headers(host.id))
    assert response.json() == {"unread": 1}


async def test_mark_read_is_idempotent(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    sent = (
        await test_client.post(
            f"/conversations/{bob}/messages",
            json={"content": "read me"},
            headers=auth_headers(alice),
        )
    ).json()

    for _ in range(2):
        response = await test_client.post(
            f"/messages/{sent['id']}/read", headers=auth_headers(bob)
        )
        assert response.status_code == 200
        assert response.json()["is_read"] is True

    response = await test_client.get("/users/me/unread", headers=auth_headers(bob))
    assert response.json() == {"unread": 0}


async def test_mark_read_by_sender_is_forbidden(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    sent = (
        await test_client.post(
            f"/conversations/{bob}/messages",
            json={"content": "mine"},
            headers=auth_headers(alice),
        )
    ).json()

    response = await test_client.post(
        f"/messages/{sent['id']}/read", headers=auth_headers(alice)
    )
    assert response.status_code == 403

    response = await test_client.post(
        f"/messages/{uuid.uuid4()}/read", headers=auth_headers(bob)
    )
    assert response.status_code == 404


async def test_image_upload(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()

    response = await test_client.post(
        f"/conversations/{bob}/images",
        files={"file": ("room.png", PNG_BYTES, "image/png")},
        headers=auth_headers(alice),
    )
    assert response.status_code == 201
    message = response.json()
    assert message["kind"] == MessageKind.IMAGE.value
    assert message["content"] is None
    assert message["payload"]["type"] == "image"
    assert message["image_url"].endswith(".png")

    response = await test_client.post(
        f"/conversations/{bob}/images",
        files={"file": ("notes.txt", b"hello", "text/plain")},
        data={"caption": "not an image"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


async def test_image_upload_with_caption(test_client: AsyncClient):
    response = await test_client.post(
        f"/conversations/{uuid.uuid4()}/images",
        files={"file": ("bike.jpg", PNG_BYTES, "image/jpeg")},
        data={"caption": "Your bike"},
        headers=auth_headers(uuid.uuid4()),
    )
    assert response.status_code == 201
    assert response.json()["payload"]["type"] == "mixed"
    assert response.json()["content"] == "Your bike"


async def test_report_conversation(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()

    response = await test_client.post(
        f"/conversations/{bob}/reports",
        json={"reason": "spam"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 404

    await test_client.post(
        f"/conversations/{alice}/messages",
        json={"content": "buy followers now"},
        headers=auth_headers(bob),
    )
    response = await test_client.post(
        f"/conversations/{bob}/reports",
        json={"reason": "spam"},
        headers=auth_headers(alice),
    )
    assert response.status_code == 201
    report = response.json()
    assert report["reporter_id"] == str(alice)
    assert report["reported_user_id"] == str(bob)

    response = await test_client.post(
        f"/conversations/{bob}/reports",
        json={"reason": "  "},
        headers=auth_headers(alice),
    )
    assert response.status_code == 400


async def test_health(test_client: AsyncClient):
    response = await test_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


async def test_history_after_cursor_returns_newer_messages(test_client: AsyncClient):
    alice, bob = uuid.uuid4(), uuid.uuid4()
    sent = []
    for text in ("first", "second", "third"):
        response = await test_client.post(
            f"/conversations/{bob}/messages",
            json={"content": text},
            headers=auth_headers(alice),
        )
        sent.append(response.json())

    response = await test_client.get(
        f"/conversations/{alice}/messages",
        params={"after": sent[0]["created_at"]},
        headers=auth_headers(bob),
    )
    assert response.status_code == 200
    page = response.json()
    assert [m["content"] for m in page["messages"]] == ["second", "third"]
    assert page["has_more"] is False

    response = await test_client.get(
        f"/conversations/{alice}/messages",
        params={"after": sent[0]["created_at"], "before": sent[2]["created_at"]},
        headers=auth_headers(bob),
    )
    assert response.status_code == 400
