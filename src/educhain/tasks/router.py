"""Task endpoints: publish, browse, change status."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.profiles.models import Profile
from educhain.store.records import Difficulty, TaskStatus
from educhain.tasks.schemas import TaskCreateRequest, TaskListResponse, TaskResponse, TaskStatusRequest

router = APIRouter(prefix="/api/v1/tasks", tags=["Tasks"])


@router.post("", response_model=TaskResponse, status_code=201)
async def create_task(
    body: TaskCreateRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> TaskResponse:
    """Publish a task; its stake is locked from the caller as reward escrow."""
    task = await market.tasks.create_task(profile.id, **body.model_dump())
    return TaskResponse.model_validate(task)


@router.get("", response_model=TaskListResponse)
async def list_tasks(
    category: str | None = Query(default=None),
    difficulty: Difficulty | None = Query(default=None),
    teacher_id: str | None = Query(default=None),
    status: TaskStatus | None = Query(default=TaskStatus.ACTIVE),
    market: Marketplace = Depends(get_marketplace),
) -> TaskListResponse:
    tasks = await market.tasks.list_tasks(
        category=category,
        difficulty=difficulty,
        teacher_id=teacher_id,
        status=status,
    )
    return TaskListResponse(tasks=[TaskResponse.model_validate(t) for t in tasks], total=len(tasks))


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    market: Marketplace = Depends(get_marketplace),
) -> TaskResponse:
    return TaskResponse.model_validate(await market.tasks.get_task(task_id))


@router.patch("/{task_id}/status", response_model=TaskResponse)
async def set_task_status(
    task_id: str,
    body: TaskStatusRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> TaskResponse:
    task = await market.tasks.set_status(task_id, profile.id, body.status)
    return TaskResponse.model_validate(task)
