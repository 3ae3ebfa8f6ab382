"""Enrollment lifecycle: enroll, submit, review, cancel.

State flow::

    active -> completed -> reviewed
       \\-> cancelled

Every transition is a conditional update on the enrollment's current status,
so two callers racing on the same enrollment cannot both move it. Capacity,
counters and balances change in the same store transaction as the status.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from educhain.config import Settings
from educhain.errors import (
    AttemptsExhaustedError,
    CapacityExceededError,
    ConcurrencyConflictError,
    DuplicateEnrollmentError,
    InsufficientStakeError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    NotFoundError,
    SettlementFailure,
    TaskClosedError,
)
from educhain.ledger.service import Settlement, StakeLedger
from educhain.profiles.models import can_learn
from educhain.profiles.service import load_profile
from educhain.store.base import Reader, Store, UniqueViolation, compare_and_set
from educhain.store.records import (
    OPEN_ENROLLMENT_STATES,
    Enrollment,
    EnrollmentStatus,
    ProfileRow,
    Task,
    TaskStatus,
    utcnow,
)
from educhain.tasks.service import load_task

logger = structlog.get_logger()

VALID_TRANSITIONS: dict[EnrollmentStatus, list[EnrollmentStatus]] = {
    EnrollmentStatus.ACTIVE: [EnrollmentStatus.COMPLETED, EnrollmentStatus.CANCELLED],
    EnrollmentStatus.COMPLETED: [EnrollmentStatus.REVIEWED],
    EnrollmentStatus.REVIEWED: [],
    EnrollmentStatus.CANCELLED: [],
}

MIN_SCORE = 1
MAX_SCORE = 5
SCORE_SCALE = 20


def validate_transition(current: EnrollmentStatus, target: EnrollmentStatus) -> None:
    """Raise InvalidStateTransitionError unless ``current -> target`` is allowed."""
    valid = VALID_TRANSITIONS.get(current, [])
    if target not in valid:
        raise InvalidStateTransitionError(
            f"Invalid transition: {current.value} -> {target.value}. "
            f"Valid transitions: {[s.value for s in valid]}",
            current=current.value,
            target=target.value,
        )


def weighted_reputation(scores: Sequence[int], weight: float) -> float:
    """Exponentially weighted average of review scores on a 0-100 scale.

    The first score seeds the average; each later score moves it by ``weight``.
    """
    if not scores:
        return 0.0
    reputation = float(scores[0] * SCORE_SCALE)
    for score in scores[1:]:
        reputation = weight * score * SCORE_SCALE + (1 - weight) * reputation
    return round(reputation, 2)


@dataclass(frozen=True)
class ReviewOutcome:
    enrollment: Enrollment
    settlement: Settlement
    passed: bool


async def load_enrollment(reader: Reader, enrollment_id: str) -> Enrollment:
    enrollment = await reader.get(Enrollment, enrollment_id)
    if enrollment is None:
        raise NotFoundError(f"Enrollment {enrollment_id} not found", enrollment_id=enrollment_id)
    return enrollment


class EnrollmentStateMachine:
    def __init__(self, store: Store, ledger: StakeLedger, settings: Settings) -> None:
        self._store = store
        self._ledger = ledger
        self._settings = settings

    async def enroll(self, task_id: str, student_id: str) -> Enrollment:
        """Reserve a seat on a task and lock the student's stake.

        Raises DuplicateEnrollmentError, AttemptsExhaustedError,
        CapacityExceededError or InsufficientStakeError, in that order of
        precedence, plus NotFoundError / NotAuthorizedError / TaskClosedError.
        """
        async with self._store.transaction() as tx:
            student = await load_profile(tx, student_id)
            if not can_learn(student):
                raise NotAuthorizedError("Only students can enroll", profile_id=student_id)
            task = await load_task(tx, task_id)
            if task.teacher_id == student_id:
                raise NotAuthorizedError("Teachers cannot enroll in their own task", task_id=task_id)
            if task.status != TaskStatus.ACTIVE:
                raise TaskClosedError(f"Task {task_id} is {task.status.value}", task_id=task_id)

            previous = await tx.list(Enrollment, task_id=task_id, student_id=student_id)
            if any(e.status in OPEN_ENROLLMENT_STATES for e in previous):
                raise DuplicateEnrollmentError(
                    "Student already has an open enrollment for this task",
                    task_id=task_id,
                    student_id=student_id,
                )
            if any(
                e.status == EnrollmentStatus.REVIEWED and (e.review_score or 0) >= self._settings.passing_score
                for e in previous
            ):
                raise AttemptsExhaustedError(
                    "Student already passed this task",
                    task_id=task_id,
                    student_id=student_id,
                )
            attempts = sum(1 for e in previous if e.status != EnrollmentStatus.CANCELLED)
            if attempts >= task.max_attempts:
                raise AttemptsExhaustedError(
                    f"All {task.max_attempts} attempts used",
                    task_id=task_id,
                    student_id=student_id,
                )

            def reserve_seat(row: Task) -> dict[str, object]:
                if row.status != TaskStatus.ACTIVE:
                    raise TaskClosedError(f"Task {task_id} is {row.status.value}", task_id=task_id)
                if row.current_students >= row.max_students:
                    raise CapacityExceededError(
                        f"Task is full ({row.max_students} students)",
                        task_id=task_id,
                    )
                # every open seat must be able to collect its reward from the escrow
                committed = row.reward_amount * (row.successful_completions + row.current_students + 1)
                if committed > row.stake_amount:
                    raise CapacityExceededError(
                        f"Task escrow {row.stake_amount} cannot fund another reward of {row.reward_amount}",
                        task_id=task_id,
                    )
                return {
                    "current_students": row.current_students + 1,
                    "total_attempts": row.total_attempts + 1,
                    "status": row.status,
                }

            task = await compare_and_set(
                tx, Task, task_id, reserve_seat, max_retries=self._settings.cas_max_retries,
            )

            if student.token_balance < task.student_stake_required:
                raise InsufficientStakeError(
                    f"Balance {student.token_balance} is below the required stake {task.student_stake_required}",
                    task_id=task_id,
                    student_id=student_id,
                )

            enrollment = Enrollment(
                task_id=task_id,
                student_id=student_id,
                stake_locked=task.student_stake_required,
            )
            try:
                await tx.insert(enrollment)
            except UniqueViolation as exc:
                raise DuplicateEnrollmentError(
                    "Student already has an open enrollment for this task",
                    task_id=task_id,
                    student_id=student_id,
                ) from exc

            await self._ledger.lock_stake(
                tx, student_id, enrollment.stake_locked, task_id=task_id, enrollment_id=enrollment.id,
            )
            await compare_and_set(
                tx,
                ProfileRow,
                student_id,
                lambda row: {"total_tasks_attempted": row.total_tasks_attempted + 1},
                max_retries=self._settings.cas_max_retries,
            )

        logger.info(
            "enrollment_created",
            enrollment_id=enrollment.id,
            task_id=task_id,
            student_id=student_id,
            stake=str(enrollment.stake_locked),
        )
        return enrollment

    async def submit(self, enrollment_id: str, text: str, student_id: str | None = None) -> Enrollment:
        if not text or not text.strip():
            raise InvalidInputError("Submission text is required")

        async with self._store.transaction() as tx:
            enrollment = await load_enrollment(tx, enrollment_id)
            if student_id is not None and enrollment.student_id != student_id:
                raise NotAuthorizedError("Only the enrolled student can submit", enrollment_id=enrollment_id)

            def complete(row: Enrollment) -> dict[str, object]:
                validate_transition(row.status, EnrollmentStatus.COMPLETED)
                return {
                    "status": EnrollmentStatus.COMPLETED,
                    "submission_text": text,
                    "completed_at": utcnow(),
                }

            enrollment = await compare_and_set(
                tx, Enrollment, enrollment_id, complete, max_retries=self._settings.cas_max_retries,
            )

        logger.info("enrollment_submitted", enrollment_id=enrollment_id)
        return enrollment

    async def review(
        self,
        enrollment_id: str,
        score: int,
        comment: str | None = None,
        reviewer_id: str | None = None,
    ) -> ReviewOutcome:
        """Score a submission and settle its stake in one transaction.

        A review that keeps losing compare-and-set races is retried from
        scratch; after ``settlement_max_retries`` attempts it fails with
        SettlementFailure and nothing is written.
        """
        if isinstance(score, bool) or not isinstance(score, int) or not MIN_SCORE <= score <= MAX_SCORE:
            raise InvalidInputError(f"Score must be an integer from {MIN_SCORE} to {MAX_SCORE}", score=score)

        last_error: ConcurrencyConflictError | None = None
        for attempt in range(self._settings.settlement_max_retries):
            try:
                outcome = await self._review_once(enrollment_id, score, comment, reviewer_id)
            except ConcurrencyConflictError as exc:
                last_error = exc
                logger.warning("review_conflict", enrollment_id=enrollment_id, attempt=attempt)
                continue
            logger.info(
                "enrollment_reviewed",
                enrollment_id=enrollment_id,
                score=score,
                passed=outcome.passed,
                batch_id=outcome.settlement.batch_id,
            )
            return outcome

        raise SettlementFailure(
            f"Settlement for enrollment {enrollment_id} did not commit",
            enrollment_id=enrollment_id,
        ) from last_error

    async def _review_once(
        self,
        enrollment_id: str,
        score: int,
        comment: str | None,
        reviewer_id: str | None,
    ) -> ReviewOutcome:
        max_retries = self._settings.cas_max_retries
        passed = score >= self._settings.passing_score

        async with self._store.transaction() as tx:
            enrollment = await load_enrollment(tx, enrollment_id)
            task = await load_task(tx, enrollment.task_id)
            if reviewer_id is not None and reviewer_id != task.teacher_id:
                raise NotAuthorizedError("Only the task's teacher can review", enrollment_id=enrollment_id)

            def mark_reviewed(row: Enrollment) -> dict[str, object]:
                validate_transition(row.status, EnrollmentStatus.REVIEWED)
                return {
                    "status": EnrollmentStatus.REVIEWED,
                    "review_score": score,
                    "review_comment": comment,
                    "reviewed_at": utcnow(),
                    "badge_eligible": score == self._settings.badge_score,
                }

            enrollment = await compare_and_set(tx, Enrollment, enrollment_id, mark_reviewed, max_retries=max_retries)
            settlement = await self._ledger.settle(tx, enrollment, task, score)

            await compare_and_set(
                tx,
                Task,
                task.id,
                lambda row: {
                    "current_students": max(row.current_students - 1, 0),
                    "successful_completions": row.successful_completions + (1 if passed else 0),
                },
                max_retries=max_retries,
            )

            reputation = await self._reputation(tx, enrollment.student_id)
            await compare_and_set(
                tx,
                ProfileRow,
                enrollment.student_id,
                lambda row: {
                    "reputation_score": reputation,
                    "total_tasks_completed": row.total_tasks_completed + (1 if passed else 0),
                },
                max_retries=max_retries,
            )
            teacher_reputation = await self._reputation(tx, task.teacher_id)
            await compare_and_set(
                tx,
                ProfileRow,
                task.teacher_id,
                lambda row: {"reputation_score": teacher_reputation},
                max_retries=max_retries,
            )

        return ReviewOutcome(enrollment=enrollment, settlement=settlement, passed=passed)

    async def _reputation(self, reader: Reader, profile_id: str) -> float:
        """Weighted score over every review a profile took part in, as student or as teacher."""
        history = await reader.list(Enrollment, student_id=profile_id, status=EnrollmentStatus.REVIEWED)
        for task in await reader.list(Task, teacher_id=profile_id):
            history.extend(await reader.list(Enrollment, task_id=task.id, status=EnrollmentStatus.REVIEWED))
        history.sort(key=lambda e: e.reviewed_at)
        return weighted_reputation(
            [e.review_score for e in history if e.review_score is not None],
            self._settings.reputation_weight,
        )

    async def cancel(self, enrollment_id: str, student_id: str | None = None) -> Enrollment:
        """Withdraw an active enrollment and refund its stake in full."""
        async with self._store.transaction() as tx:
            enrollment = await load_enrollment(tx, enrollment_id)
            if student_id is not None and enrollment.student_id != student_id:
                raise NotAuthorizedError("Only the enrolled student can cancel", enrollment_id=enrollment_id)

            def withdraw(row: Enrollment) -> dict[str, object]:
                validate_transition(row.status, EnrollmentStatus.CANCELLED)
                return {"status": EnrollmentStatus.CANCELLED}

            enrollment = await compare_and_set(
                tx, Enrollment, enrollment_id, withdraw, max_retries=self._settings.cas_max_retries,
            )
            await self._ledger.refund_stake(tx, enrollment)
            await compare_and_set(
                tx,
                Task,
                enrollment.task_id,
                lambda row: {"current_students": max(row.current_students - 1, 0)},
                max_retries=self._settings.cas_max_retries,
            )

        logger.info("enrollment_cancelled", enrollment_id=enrollment_id)
        return enrollment

    # --- Queries ---

    async def get_enrollment(self, enrollment_id: str) -> Enrollment:
        return await load_enrollment(self._store, enrollment_id)

    async def list_enrollments(
        self,
        *,
        task_id: str | None = None,
        student_id: str | None = None,
        status: EnrollmentStatus | None = None,
    ) -> list[Enrollment]:
        filters = {
            name: value
            for name, value in (("task_id", task_id), ("student_id", student_id), ("status", status))
            if value is not None
        }
        return await self._store.list(Enrollment, order_by="created_at", descending=True, **filters)
