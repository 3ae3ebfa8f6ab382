"""Request/response schemas for task endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from educhain.store.records import Difficulty, TaskStatus


class TaskCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(default="", max_length=10_000)
    difficulty: Difficulty
    category: str = Field(..., min_length=1, max_length=64)
    tags: list[str] = Field(default_factory=list, max_length=20)
    stake_amount: Decimal = Field(..., ge=0, decimal_places=8)
    reward_amount: Decimal = Field(..., ge=0, decimal_places=8)
    student_stake_required: Decimal = Field(..., ge=0, decimal_places=8)
    max_students: int = Field(..., ge=1)
    max_attempts: int = Field(default=1, ge=1)


class TaskStatusRequest(BaseModel):
    status: TaskStatus


class TaskResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    teacher_id: str
    title: str
    description: str
    difficulty: Difficulty
    category: str
    tags: list[str]
    stake_amount: Decimal
    reward_amount: Decimal
    student_stake_required: Decimal
    max_students: int
    current_students: int
    max_attempts: int
    status: TaskStatus
    total_attempts: int
    successful_completions: int
    created_at: datetime


class TaskListResponse(BaseModel):
    tasks: list[TaskResponse]
    total: int
