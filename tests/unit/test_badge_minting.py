"""Badge minting workflow tests, driven by a manual clock."""

import asyncio
import re
from decimal import Decimal

import pytest

from educhain.badges.minting import BadgeMintingWorkflow, MintPhase, MintSession, SimulatedAnchor
from educhain.errors import (
    DuplicateBadgeError,
    InvalidStateTransitionError,
    MintingFailure,
    NotAuthorizedError,
)
from educhain.store.records import Badge, Enrollment


class UnreachableAnchor(SimulatedAnchor):
    async def confirm(self, receipt: str) -> None:
        raise RuntimeError("anchor node unreachable")


async def spin_until(predicate, attempts: int = 500) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition never became true")


async def reviewed(market, task, student, score: int = 5):
    enrollment = await market.enrollments.enroll(task.id, student.id)
    await market.enrollments.submit(enrollment.id, "my answer")
    outcome = await market.enrollments.review(enrollment.id, score)
    return outcome.enrollment


async def drive_to_end(clock, sleepers: int = 1) -> None:
    for units in (2, 2, 1):
        await spin_until(lambda: clock.pending == sleepers)
        clock.advance(units)


class TestPhases:
    """The session walks idle -> anchoring -> generating -> confirming -> success."""

    async def test_full_run(self, market, clock, student, task):
        enrollment = await reviewed(market, task, student)
        session = await market.badges.prepare(enrollment.id, student_id=student.id)
        assert session.phase == MintPhase.IDLE

        job = asyncio.create_task(market.badges.run(session))

        await spin_until(lambda: clock.pending == 1)
        assert session.phase == MintPhase.ANCHORING
        assert session.receipt is not None
        clock.advance(1)
        await asyncio.sleep(0)
        assert session.phase == MintPhase.ANCHORING
        clock.advance(1)

        await spin_until(lambda: session.phase == MintPhase.GENERATING and clock.pending == 1)
        clock.advance(2)
        await spin_until(lambda: session.phase == MintPhase.CONFIRMING and clock.pending == 1)
        clock.advance(1)

        badge = await job
        assert session.phase == MintPhase.SUCCESS
        assert session.history == [
            MintPhase.IDLE,
            MintPhase.ANCHORING,
            MintPhase.GENERATING,
            MintPhase.CONFIRMING,
            MintPhase.SUCCESS,
        ]
        assert badge.skill_verified == "Python"
        assert badge.badge_image_url == "/badges/python.svg"
        assert re.fullmatch(r"POL-[0-9a-f]{32}", badge.token_id)
        assert badge.teacher_id == task.teacher_id
        assert await market.badges.badges_for(student.id) == [badge]

    async def test_nothing_written_before_confirmation(self, market, clock, store, student, task):
        enrollment = await reviewed(market, task, student)
        job = asyncio.create_task(market.badges.mint_badge(enrollment.id))

        await spin_until(lambda: clock.pending == 1)
        clock.advance(2)
        await spin_until(lambda: clock.pending == 1)
        clock.advance(2)
        await spin_until(lambda: clock.pending == 1)
        assert await store.list(Badge, student_id=student.id) == []

        clock.advance(1)
        await job
        assert len(await store.list(Badge, student_id=student.id)) == 1

    def test_skipping_a_phase_is_rejected(self, task):
        session = MintSession(Enrollment(task_id=task.id, student_id="s", stake_locked=Decimal("0")), task)
        with pytest.raises(InvalidStateTransitionError):
            session.advance(MintPhase.SUCCESS)


class TestEligibility:
    async def test_score_below_top_is_ineligible(self, market, student, task):
        enrollment = await reviewed(market, task, student, score=4)
        with pytest.raises(InvalidStateTransitionError):
            await market.badges.prepare(enrollment.id)

    async def test_unreviewed_is_ineligible(self, market, student, task):
        enrollment = await market.enrollments.enroll(task.id, student.id)
        with pytest.raises(InvalidStateTransitionError):
            await market.badges.prepare(enrollment.id)

    async def test_only_the_student_mints(self, market, teacher, student, task):
        enrollment = await reviewed(market, task, student)
        with pytest.raises(NotAuthorizedError):
            await market.badges.prepare(enrollment.id, student_id=teacher.id)


class TestDuplicates:
    async def test_second_mint_rejected(self, market, clock, student, task):
        enrollment = await reviewed(market, task, student)
        job = asyncio.create_task(market.badges.mint_badge(enrollment.id))
        await drive_to_end(clock)
        await job

        with pytest.raises(DuplicateBadgeError):
            await market.badges.prepare(enrollment.id)

    async def test_racing_mints_store_one_badge(self, market, clock, store, student, task):
        enrollment = await reviewed(market, task, student)
        first = await market.badges.prepare(enrollment.id)
        second = await market.badges.prepare(enrollment.id)

        jobs = [asyncio.create_task(market.badges.run(s)) for s in (first, second)]
        await drive_to_end(clock, sleepers=2)
        results = await asyncio.gather(*jobs, return_exceptions=True)

        assert sum(isinstance(r, Badge) for r in results) == 1
        assert sum(isinstance(r, DuplicateBadgeError) for r in results) == 1
        assert sorted(s.phase for s in (first, second)) == sorted([MintPhase.SUCCESS, MintPhase.IDLE])
        assert len(await store.list(Badge, student_id=student.id)) == 1

    async def test_same_session_runs_once(self, market, clock, student, task):
        enrollment = await reviewed(market, task, student)
        session = await market.badges.prepare(enrollment.id)
        first = asyncio.create_task(market.badges.run(session))
        second = asyncio.create_task(market.badges.run(session))

        with pytest.raises(InvalidStateTransitionError):
            await second
        await drive_to_end(clock)
        badge = await first

        assert session.phase == MintPhase.SUCCESS
        assert session.badge == badge
        assert session.history.count(MintPhase.ANCHORING) == 1


class TestFailures:
    async def test_failed_confirmation_returns_to_idle(self, market, settings, clock, store, student, task):
        workflow = BadgeMintingWorkflow(store, clock, settings, UnreachableAnchor())
        enrollment = await reviewed(market, task, student)
        session = await workflow.prepare(enrollment.id)
        job = asyncio.create_task(workflow.run(session))

        await spin_until(lambda: clock.pending == 1)
        clock.advance(2)
        await spin_until(lambda: clock.pending == 1)
        clock.advance(2)

        with pytest.raises(MintingFailure) as exc_info:
            await job
        assert exc_info.value.context["phase"] == "confirming"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert session.phase == MintPhase.IDLE
        assert session.history[-2:] == [MintPhase.CONFIRMING, MintPhase.IDLE]
        assert await store.list(Badge, student_id=student.id) == []


class TestCancellation:
    async def test_cancel_while_idle(self, market, student, task):
        enrollment = await reviewed(market, task, student)
        session = await market.badges.prepare(enrollment.id)
        session.cancel()
        with pytest.raises(InvalidStateTransitionError):
            await market.badges.run(session)

    async def test_cannot_cancel_once_started(self, market, clock, student, task):
        enrollment = await reviewed(market, task, student)
        session = await market.badges.prepare(enrollment.id)
        job = asyncio.create_task(market.badges.run(session))
        await spin_until(lambda: session.phase == MintPhase.ANCHORING)

        with pytest.raises(InvalidStateTransitionError):
            session.cancel()

        await drive_to_end(clock)
        await job
        assert session.phase == MintPhase.SUCCESS

    async def test_caller_cancellation_does_not_abort_mint(self, market, clock, store, student, task):
        enrollment = await reviewed(market, task, student)
        job = asyncio.create_task(market.badges.mint_badge(enrollment.id))
        await spin_until(lambda: clock.pending == 1)

        job.cancel()
        with pytest.raises(asyncio.CancelledError):
            await job
        assert market.badges.in_flight == 1

        clock.advance(2)
        await spin_until(lambda: clock.pending == 1)
        clock.advance(2)
        await spin_until(lambda: clock.pending == 1)
        clock.advance(1)
        await market.badges.aclose()

        assert market.badges.in_flight == 0
        assert len(await store.list(Badge, student_id=student.id)) == 1
