"""Task registry: creation, lookup, and lifecycle status."""

from __future__ import annotations

from decimal import Decimal

import structlog

from educhain.errors import InvalidInputError, InvalidStateTransitionError, NotAuthorizedError, NotFoundError
from educhain.ledger.service import StakeLedger, quantize
from educhain.profiles.models import can_teach
from educhain.profiles.service import load_profile
from educhain.store.base import Reader, Store, compare_and_set
from educhain.store.records import Difficulty, ProfileRow, Task, TaskStatus

logger = structlog.get_logger()

TASK_TRANSITIONS: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.ACTIVE: [TaskStatus.COMPLETED, TaskStatus.CANCELLED],
    TaskStatus.COMPLETED: [TaskStatus.ACTIVE],
    TaskStatus.CANCELLED: [],
}


def validate_task_transition(current: TaskStatus, target: TaskStatus) -> None:
    if target not in TASK_TRANSITIONS.get(current, []):
        raise InvalidStateTransitionError(
            f"Invalid transition: {current.value} -> {target.value}",
            current=current.value,
            target=target.value,
        )


async def load_task(reader: Reader, task_id: str) -> Task:
    task = await reader.get(Task, task_id)
    if task is None:
        raise NotFoundError(f"Task {task_id} not found", task_id=task_id)
    return task


class TaskRegistry:
    def __init__(self, store: Store, ledger: StakeLedger) -> None:
        self._store = store
        self._ledger = ledger

    async def create_task(
        self,
        teacher_id: str,
        *,
        title: str,
        difficulty: Difficulty,
        category: str,
        stake_amount: Decimal,
        reward_amount: Decimal,
        student_stake_required: Decimal,
        max_students: int,
        description: str = "",
        tags: frozenset[str] | set[str] | tuple[str, ...] = (),
        max_attempts: int = 1,
    ) -> Task:
        """Publish a task and lock its reward escrow from the teacher.

        ``stake_amount`` is the teacher's escrow and must cover at least one
        reward; enrollment admits only as many open seats as it can still pay.
        """
        title = title.strip()
        if not title:
            raise InvalidInputError("Task title is required")
        if not category.strip():
            raise InvalidInputError("Task category is required")
        for name, amount in (
            ("stake_amount", stake_amount),
            ("reward_amount", reward_amount),
            ("student_stake_required", student_stake_required),
        ):
            if amount < 0:
                raise InvalidInputError(f"{name} cannot be negative", field=name)
        if max_students < 1:
            raise InvalidInputError("max_students must be at least 1")
        if max_attempts < 1:
            raise InvalidInputError("max_attempts must be at least 1")
        if stake_amount < reward_amount:
            raise InvalidInputError("stake_amount must cover reward_amount")

        task = Task(
            teacher_id=teacher_id,
            title=title,
            description=description,
            difficulty=Difficulty(difficulty),
            category=category.strip(),
            tags=tuple(sorted({t.strip() for t in tags if t.strip()})),
            stake_amount=quantize(stake_amount),
            reward_amount=quantize(reward_amount),
            student_stake_required=quantize(student_stake_required),
            max_students=max_students,
            max_attempts=max_attempts,
        )

        async with self._store.transaction() as tx:
            teacher = await load_profile(tx, teacher_id)
            if not can_teach(teacher):
                raise NotAuthorizedError("Only teachers can create tasks", profile_id=teacher_id)
            await tx.insert(task)
            await self._ledger.lock_stake(tx, teacher_id, task.stake_amount, task_id=task.id)
            await compare_and_set(
                tx,
                ProfileRow,
                teacher_id,
                lambda row: {"total_tasks_created": row.total_tasks_created + 1},
            )

        logger.info("task_created", task_id=task.id, teacher_id=teacher_id, difficulty=task.difficulty.value)
        return task

    async def get_task(self, task_id: str) -> Task:
        return await load_task(self._store, task_id)

    async def list_tasks(
        self,
        *,
        category: str | None = None,
        difficulty: Difficulty | None = None,
        teacher_id: str | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        """Tasks matching every given filter, newest first."""
        filters = {
            name: value
            for name, value in (
                ("category", category),
                ("difficulty", difficulty),
                ("teacher_id", teacher_id),
                ("status", status),
            )
            if value is not None
        }
        return await self._store.list(Task, order_by="created_at", descending=True, **filters)

    async def set_status(self, task_id: str, teacher_id: str, status: TaskStatus) -> Task:
        """Move a task through its lifecycle.

        Cancelling requires that no enrollment is still open and returns the
        unspent escrow to the teacher in the same transaction.
        """
        target = TaskStatus(status)
        async with self._store.transaction() as tx:
            task = await load_task(tx, task_id)
            if task.teacher_id != teacher_id:
                raise NotAuthorizedError("Only the task owner can change its status", task_id=task_id)
            validate_task_transition(task.status, target)

            def apply(row: Task) -> dict[str, object]:
                validate_task_transition(row.status, target)
                if target == TaskStatus.CANCELLED and row.current_students > 0:
                    raise InvalidStateTransitionError("Task still has open enrollments", task_id=task_id)
                # current_students is part of the precondition so an enrollment
                # landing concurrently makes the cancel retry
                return {"status": target, "current_students": row.current_students}

            task = await compare_and_set(tx, Task, task_id, apply)
            if target == TaskStatus.CANCELLED:
                await self._ledger.release_escrow(tx, task)

        logger.info("task_status_changed", task_id=task_id, status=target.value)
        return task
