"""Chat endpoints: sessions, history and the streamed send/regenerate calls."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator, Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from tripchat.errors import ConversationBusyError, ImageError
from tripchat.models import Message
from tripchat.services.chat import ChatService
from tripchat.services.conversation import StoreEvent
from tripchat.services.images import parse_data_uri
from tripchat.utils.render import render_message

from .deps import chat_service

router = APIRouter(tags=["chat"])
logger = logging.getLogger(__name__)

# Runs keep going after the client disconnects; hold a reference until done.
_RUNS: set[asyncio.Task] = set()


class SendIn(BaseModel):
    text: str
    image: str | None = None  # data URI


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def message_out(message: Message) -> dict[str, Any]:
    return {**message.to_client(), "rendered": render_message(message)}


def _sse(payload: dict[str, Any]) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def _relay(queue: asyncio.Queue[str | None], task: asyncio.Task) -> AsyncIterator[str]:
    while True:
        item = await queue.get()
        if item is None:
            break
        yield item
    exc = task.exception()
    if exc is not None:
        logger.error("Chat run failed: %s", exc)
        yield _sse({"event": "error", "detail": "Something went wrong."})
    else:
        result = task.result()
        yield _sse({"event": "done", "message": message_out(result) if result else None})


def _streaming(
    service: ChatService, run: Callable[[], Awaitable[Message | None]]
) -> StreamingResponse:
    """Start *run* holding the conversation's in-flight token and relay its store changes.

    The token is taken before the response is returned, so an overlapping
    request gets a 409 rather than an error event. *run* must pass
    ``reserved=True`` so the token is released when it finishes.
    """

    try:
        service.acquire()
    except ConversationBusyError as exc:
        raise HTTPException(status_code=409, detail="A reply is already being generated.") from exc

    queue: asyncio.Queue[str | None] = asyncio.Queue()

    def _on_change(event: StoreEvent, message: Message | None) -> None:
        queue.put_nowait(_sse({"event": event, "message": message_out(message) if message else None}))

    unsubscribe = service.store.subscribe(_on_change)
    task = asyncio.create_task(run())
    _RUNS.add(task)
    task.add_done_callback(_RUNS.discard)
    task.add_done_callback(lambda _: unsubscribe())
    task.add_done_callback(lambda _: queue.put_nowait(None))
    return StreamingResponse(
        _relay(queue, task),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache"},
    )


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/sessions")
async def list_sessions(service: ChatService = Depends(chat_service)):
    sessions = await service.load_sessions()
    return [s.model_dump(mode="json", exclude={"user_id"}) for s in sessions]


@router.post("/sessions/new")
async def new_chat(service: ChatService = Depends(chat_service)):
    service.new_chat()
    return {"status": "ok"}


@router.post("/sessions/{session_id}/select")
async def select_session(session_id: str, service: ChatService = Depends(chat_service)):
    if not any(s.id == session_id for s in service.sessions):
        await service.load_sessions()
    if not any(s.id == session_id for s in service.sessions):
        raise HTTPException(status_code=404, detail="Conversation not found")
    messages = await service.select_session(session_id)
    return [message_out(m) for m in messages]


@router.get("/messages")
async def list_messages(service: ChatService = Depends(chat_service)):
    return {
        "session_id": service.current_session_id,
        "busy": service.busy,
        "messages": [message_out(m) for m in service.store.snapshot()],
    }


# ---------------------------------------------------------------------------
# Streaming send / regenerate
# ---------------------------------------------------------------------------


@router.post("/chat/send")
async def send(data: SendIn, service: ChatService = Depends(chat_service)):
    if not data.text.strip() and not data.image:
        raise HTTPException(status_code=400, detail="Message is required")
    if data.image:
        try:
            parse_data_uri(data.image)
        except ImageError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _streaming(service, lambda: service.send(data.text, data.image, reserved=True))


@router.post("/chat/regenerate/{message_id}")
async def regenerate(message_id: str, service: ChatService = Depends(chat_service)):
    return _streaming(service, lambda: service.regenerate(message_id, reserved=True))
