"""Question endpoints and the live thread WebSocket."""

from __future__ import annotations

import asyncio

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect

from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.errors import MarketplaceError
from educhain.profiles.models import Profile
from educhain.questions.channel import ThreadFeed
from educhain.questions.schemas import (
    AnswerCreateRequest,
    AnswerResponse,
    QuestionCreateRequest,
    QuestionResponse,
    ThreadListResponse,
    ThreadResponse,
)

logger = structlog.get_logger()

router = APIRouter(tags=["Questions"])

WS_POLICY_VIOLATION = 4003


@router.post("/api/v1/tasks/{task_id}/questions", response_model=QuestionResponse, status_code=201)
async def ask_question(
    task_id: str,
    body: QuestionCreateRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> QuestionResponse:
    question = await market.questions.ask_question(task_id, profile.id, body.question_text)
    return QuestionResponse.model_validate(question)


@router.get("/api/v1/tasks/{task_id}/questions", response_model=ThreadListResponse)
async def list_threads(
    task_id: str,
    student_id: str | None = Query(default=None),
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> ThreadListResponse:
    """Threads for one student on a task; defaults to the caller's own."""
    student_id = student_id or profile.id
    if not await market.questions.can_view(task_id, student_id, profile.id):
        raise HTTPException(status_code=403, detail="Not allowed to read these questions")
    threads = await market.questions.list_threads(task_id, student_id)
    return ThreadListResponse(threads=[ThreadResponse.from_thread(t) for t in threads])


@router.post("/api/v1/questions/{question_id}/answers", response_model=AnswerResponse, status_code=201)
async def answer_question(
    question_id: str,
    body: AnswerCreateRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> AnswerResponse:
    answer = await market.questions.answer_question(question_id, profile.id, body.answer_text)
    return AnswerResponse.model_validate(answer)


async def _pump(websocket: WebSocket, feed: ThreadFeed) -> None:
    async for threads in feed:
        await websocket.send_json({
            "type": "threads",
            "threads": [ThreadResponse.from_thread(t).model_dump(mode="json") for t in threads],
        })


@router.websocket("/ws/tasks/{task_id}/questions/{student_id}")
async def thread_socket(
    websocket: WebSocket,
    task_id: str,
    student_id: str,
    wallet: str = Query(...),
) -> None:
    """Live thread list for a (task, student) pair.

    Protocol:
        Server -> Client:
            {"type": "threads", "threads": [...]}   on connect and after every change
            {"type": "pong"}
        Client -> Server:
            "ping"
    """
    market: Marketplace = websocket.app.state.marketplace
    viewer = await market.profiles.get_by_wallet(wallet)
    try:
        allowed = viewer is not None and viewer.is_active and await market.questions.can_view(
            task_id, student_id, viewer.id,
        )
    except MarketplaceError as exc:
        await websocket.close(code=WS_POLICY_VIOLATION, reason=exc.kind)
        return
    if not allowed:
        await websocket.close(code=WS_POLICY_VIOLATION, reason="not_authorized")
        return

    await websocket.accept()
    log = logger.bind(task_id=task_id, student_id=student_id, viewer_id=viewer.id)
    log.info("thread_socket_opened")

    async with market.questions.subscribe(task_id, student_id) as feed:
        pump = asyncio.create_task(_pump(websocket, feed))
        try:
            while True:
                message = await websocket.receive_text()
                if message == "ping":
                    await websocket.send_json({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            log.info("thread_socket_closed")
