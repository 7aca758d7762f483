import asyncio
import json
import logging
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from directchat.auth import websocket_user_id
from directchat.backend.gateway import Backend
from directchat.logic.messaging_processing import handle_open_conversation_view
from directchat.schemas.message import MessageRead
from directchat.services.attachment_uploader import AttachmentUploader
from directchat.services.conversation_view import ConversationView
from directchat.services.dependencies import (
    get_attachment_uploader,
    get_backend,
    get_message_stream,
    get_message_writer,
    get_realtime_dispatcher,
)
from directchat.services.exceptions import AuthError, ServiceError
from directchat.services.message_stream import MessageStream
from directchat.services.message_writer import MessageWriter
from directchat.services.realtime_dispatcher import RealtimeDispatcher

logger = logging.getLogger(__name__)
realtime_router_instance = APIRouter(tags=["realtime"])


def _dump(messages: list[MessageRead]) -> list[dict[str, Any]]:
    return [m.model_dump(mode="json") for m in messages]


def _command(text: str) -> Optional[str]:
    """Client frames are either the bare word `ping` or `{"type": ...}`."""
    if text == "ping":
        return "ping"
    try:
        frame = json.loads(text)
    except ValueError:
        return None
    return frame.get("type") if isinstance(frame, dict) else None


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """The only writer to the socket, so events keep their queue order."""
    while True:
        event = await outbox.get()
        await websocket.send_json(event)
        if event["type"] == "lost":
            await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
            return


async def _run_command(
    command: Optional[str], view: ConversationView, outbox: asyncio.Queue
) -> None:
    if command == "ping":
        outbox.put_nowait({"type": "pong"})
    elif command == "load_older":
        try:
            older = await view.load_older()
        except ServiceError as e:
            outbox.put_nowait(
                {"type": "error", "detail": e.message, "retryable": e.retryable}
            )
            return
        outbox.put_nowait(
            {"type": "older", "messages": _dump(older), "has_more": view.has_more}
        )
    elif command == "mark_read":
        outbox.put_nowait({"type": "read", "count": await view.mark_read()})
    else:
        outbox.put_nowait(
            {"type": "error", "detail": "Unknown command.", "retryable": False}
        )


@realtime_router_instance.websocket("/ws/conversations/{other_user_id}")
async def conversation_events(
    websocket: WebSocket,
    other_user_id: UUID,
    backend: Backend = Depends(get_backend),
    stream: MessageStream = Depends(get_message_stream),
    writer: MessageWriter = Depends(get_message_writer),
    uploader: AttachmentUploader = Depends(get_attachment_uploader),
    dispatcher: RealtimeDispatcher = Depends(get_realtime_dispatcher),
):
    """
    A live, reconciled view of one conversation.

    The first event is a `snapshot` of the newest history window; after that
    come `insert` and `delete` events. Clients may send `ping`, `load_older`
    and `mark_read`.
    """
    try:
        user_id = await websocket_user_id(websocket)
    except AuthError:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    if user_id == other_user_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    outbox: asyncio.Queue = asyncio.Queue()

    try:
        view = await handle_open_conversation_view(
            user_id,
            other_user_id,
            backend=backend,
            stream=stream,
            writer=writer,
            uploader=uploader,
            dispatcher=dispatcher,
            on_insert=lambda m: outbox.put_nowait(
                {"type": "insert", "message": m.model_dump(mode="json")}
            ),
            on_delete=lambda message_id: outbox.put_nowait(
                {"type": "delete", "message_id": str(message_id)}
            ),
            on_lost=lambda error: outbox.put_nowait(
                {"type": "lost", "detail": error.message}
            ),
        )
    except ServiceError as e:
        logger.warning(f"Could not open conversation for {user_id}: {e}")
        await websocket.send_json({"type": "lost", "detail": e.message})
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return
    # Queued before any live event: open() returned without yielding since
    # listeners were switched on
    outbox.put_nowait(
        {
            "type": "snapshot",
            "messages": _dump(view.messages()),
            "has_more": view.has_more,
        }
    )
    pump = asyncio.create_task(_pump(websocket, outbox))

    logger.info(f"Realtime socket opened for {user_id} with {other_user_id}")
    try:
        while True:
            text = await websocket.receive_text()
            await _run_command(_command(text), view, outbox)
    except WebSocketDisconnect:
        logger.info(f"Realtime socket closed for {user_id} with {other_user_id}")
    finally:
        pump.cancel()
        await asyncio.gather(pump, return_exceptions=True)
        await view.close()
