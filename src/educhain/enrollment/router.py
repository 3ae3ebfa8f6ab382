"""Enrollment endpoints: enroll, submit, review, cancel."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from educhain.container import Marketplace
from educhain.dependencies import get_current_profile, get_marketplace
from educhain.enrollment.schemas import (
    EnrollmentListResponse,
    EnrollmentResponse,
    ReviewRequest,
    ReviewResponse,
    SettlementResponse,
    SubmitRequest,
)
from educhain.profiles.models import Profile
from educhain.store.records import EnrollmentStatus

router = APIRouter(prefix="/api/v1", tags=["Enrollments"])


@router.post("/tasks/{task_id}/enroll", response_model=EnrollmentResponse, status_code=201)
async def enroll(
    task_id: str,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> EnrollmentResponse:
    """Reserve a seat on a task and lock the required stake."""
    enrollment = await market.enrollments.enroll(task_id, profile.id)
    return EnrollmentResponse.model_validate(enrollment)


@router.get("/enrollments", response_model=EnrollmentListResponse)
async def list_enrollments(
    task_id: str | None = Query(default=None),
    status: EnrollmentStatus | None = Query(default=None),
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> EnrollmentListResponse:
    """Own enrollments, or every enrollment on a task the caller teaches."""
    student_id: str | None = profile.id
    if task_id is not None:
        task = await market.tasks.get_task(task_id)
        if task.teacher_id == profile.id:
            student_id = None
    enrollments = await market.enrollments.list_enrollments(
        task_id=task_id,
        student_id=student_id,
        status=status,
    )
    return EnrollmentListResponse(
        enrollments=[EnrollmentResponse.model_validate(e) for e in enrollments],
        total=len(enrollments),
    )


@router.post("/enrollments/{enrollment_id}/submit", response_model=EnrollmentResponse)
async def submit(
    enrollment_id: str,
    body: SubmitRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> EnrollmentResponse:
    enrollment = await market.enrollments.submit(enrollment_id, body.submission_text, student_id=profile.id)
    return EnrollmentResponse.model_validate(enrollment)


@router.post("/enrollments/{enrollment_id}/review", response_model=ReviewResponse)
async def review(
    enrollment_id: str,
    body: ReviewRequest,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> ReviewResponse:
    """Score a submission; the stake settles in the same transaction."""
    outcome = await market.enrollments.review(
        enrollment_id,
        body.score,
        comment=body.comment,
        reviewer_id=profile.id,
    )
    return ReviewResponse(
        enrollment=EnrollmentResponse.model_validate(outcome.enrollment),
        settlement=SettlementResponse.model_validate(outcome.settlement),
        passed=outcome.passed,
    )


@router.post("/enrollments/{enrollment_id}/cancel", response_model=EnrollmentResponse)
async def cancel(
    enrollment_id: str,
    profile: Profile = Depends(get_current_profile),
    market: Marketplace = Depends(get_marketplace),
) -> EnrollmentResponse:
    enrollment = await market.enrollments.cancel(enrollment_id, student_id=profile.id)
    return EnrollmentResponse.model_validate(enrollment)
