"""Request/response schemas for enrollment endpoints."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from educhain.store.records import EnrollmentStatus


class SubmitRequest(BaseModel):
    submission_text: str = Field(..., min_length=1, max_length=50_000)


class ReviewRequest(BaseModel):
    score: int = Field(..., ge=1, le=5)
    comment: str | None = Field(default=None, max_length=5_000)


class EnrollmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    task_id: str
    student_id: str
    status: EnrollmentStatus
    stake_locked: Decimal
    submission_text: str | None
    completed_at: datetime | None
    review_score: int | None
    review_comment: str | None
    reviewed_at: datetime | None
    badge_eligible: bool
    created_at: datetime


class EnrollmentListResponse(BaseModel):
    enrollments: list[EnrollmentResponse]
    total: int


class SettlementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    batch_id: str | None
    refund: Decimal
    reward: Decimal
    penalty: Decimal


class ReviewResponse(BaseModel):
    enrollment: EnrollmentResponse
    settlement: SettlementResponse
    passed: bool
