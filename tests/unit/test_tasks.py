"""Task registry tests: publishing, browsing, lifecycle."""

from decimal import Decimal

import pytest

from educhain.errors import (
    InsufficientStakeError,
    InvalidInputError,
    InvalidStateTransitionError,
    NotAuthorizedError,
    NotFoundError,
)
from educhain.store.records import Difficulty, Task, TaskStatus
from educhain.tasks.service import TASK_TRANSITIONS, validate_task_transition
from tests.conftest import publish_task


class TestTaskTransitions:
    def test_cancelled_is_terminal(self):
        assert TASK_TRANSITIONS[TaskStatus.CANCELLED] == []

    def test_completed_can_reopen(self):
        validate_task_transition(TaskStatus.COMPLETED, TaskStatus.ACTIVE)

    def test_completed_cannot_cancel(self):
        with pytest.raises(InvalidStateTransitionError, match="completed -> cancelled"):
            validate_task_transition(TaskStatus.COMPLETED, TaskStatus.CANCELLED)


class TestCreateTask:
    async def test_creation_updates_teacher(self, market, teacher, task):
        assert task.status == TaskStatus.ACTIVE
        assert task.current_students == 0
        profile = await market.profiles.get_profile(teacher.id)
        assert profile.total_tasks_created == 1
        assert profile.token_balance == Decimal("900")

    async def test_tags_are_normalized(self, market, teacher):
        task = await publish_task(market, teacher.id, tags={" loops", "python", "loops", ""})
        assert task.tags == ("loops", "python")

    async def test_students_cannot_publish(self, market, student):
        with pytest.raises(NotAuthorizedError):
            await publish_task(market, student.id)

    async def test_escrow_larger_than_balance(self, market, teacher):
        with pytest.raises(InsufficientStakeError):
            await publish_task(market, teacher.id, stake_amount=Decimal("5000"))
        assert await market.tasks.list_tasks() == []
        profile = await market.profiles.get_profile(teacher.id)
        assert profile.total_tasks_created == 0

    @pytest.mark.parametrize(
        "overrides",
        [
            {"title": "  "},
            {"category": ""},
            {"reward_amount": Decimal("-1")},
            {"max_students": 0},
            {"max_attempts": 0},
            {"stake_amount": Decimal("10"), "reward_amount": Decimal("20")},
        ],
    )
    async def test_invalid_input(self, market, teacher, overrides):
        with pytest.raises(InvalidInputError):
            await publish_task(market, teacher.id, **overrides)

    async def test_unknown_teacher(self, market):
        with pytest.raises(NotFoundError):
            await publish_task(market, "missing")


class TestListTasks:
    async def test_filters_and_order(self, market, teacher):
        first = await publish_task(market, teacher.id, category="math", difficulty=Difficulty.ADVANCED)
        second = await publish_task(market, teacher.id, category="math")
        await publish_task(market, teacher.id, category="history")

        math = await market.tasks.list_tasks(category="math")
        assert [t.id for t in math] == [second.id, first.id]
        advanced = await market.tasks.list_tasks(difficulty=Difficulty.ADVANCED)
        assert [t.id for t in advanced] == [first.id]

    async def test_status_filter(self, market, teacher, task):
        await market.tasks.set_status(task.id, teacher.id, TaskStatus.COMPLETED)
        assert await market.tasks.list_tasks(status=TaskStatus.ACTIVE) == []
        assert len(await market.tasks.list_tasks(status=TaskStatus.COMPLETED)) == 1


class TestSetStatus:
    async def test_only_owner(self, market, student, task):
        with pytest.raises(NotAuthorizedError):
            await market.tasks.set_status(task.id, student.id, TaskStatus.COMPLETED)

    async def test_complete_and_reopen(self, market, teacher, task):
        closed = await market.tasks.set_status(task.id, teacher.id, TaskStatus.COMPLETED)
        assert closed.status == TaskStatus.COMPLETED
        reopened = await market.tasks.set_status(task.id, teacher.id, TaskStatus.ACTIVE)
        assert reopened.status == TaskStatus.ACTIVE

    async def test_cancel_returns_unspent_escrow(self, market, teacher, student, task):
        enrollment = await market.enrollments.enroll(task.id, student.id)
        await market.enrollments.submit(enrollment.id, "done")
        await market.enrollments.review(enrollment.id, 5)

        cancelled = await market.tasks.set_status(task.id, teacher.id, TaskStatus.CANCELLED)

        assert cancelled.status == TaskStatus.CANCELLED
        assert await market.ledger.balance(teacher.id) == Decimal("980")
        assert await market.ledger.escrow_remaining(cancelled) == Decimal("0")

    async def test_cancel_blocked_by_open_enrollment(self, market, teacher, student, task):
        await market.enrollments.enroll(task.id, student.id)
        with pytest.raises(InvalidStateTransitionError):
            await market.tasks.set_status(task.id, teacher.id, TaskStatus.CANCELLED)
        stored = await market.store.get(Task, task.id)
        assert stored.status == TaskStatus.ACTIVE

    async def test_cancelled_cannot_reopen(self, market, teacher, task):
        await market.tasks.set_status(task.id, teacher.id, TaskStatus.CANCELLED)
        with pytest.raises(InvalidStateTransitionError):
            await market.tasks.set_status(task.id, teacher.id, TaskStatus.ACTIVE)
