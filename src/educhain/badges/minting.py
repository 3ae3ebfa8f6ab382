"""Proof-of-learning badge minting.

Minting walks a session through fixed phases, each with a minimum dwell time
standing in for external confirmation latency::

    idle -> anchoring -> generating -> confirming -> success

Any failure sends the session back to ``idle``. Only the last step writes:
the Badge row is inserted once confirming is done, and the store's unique
(student, task) key guarantees one badge per pair even when two mints race.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

import structlog

from educhain.badges.skills import badge_image_url, detect_skill, generate_token_id
from educhain.clock import PhaseClock
from educhain.config import Settings
from educhain.enrollment.state_machine import load_enrollment
from educhain.errors import (
    DuplicateBadgeError,
    InvalidStateTransitionError,
    MintingFailure,
    NotAuthorizedError,
)
from educhain.store.base import Store, UniqueViolation
from educhain.store.records import Badge, Enrollment, EnrollmentStatus, Task
from educhain.tasks.service import load_task

logger = structlog.get_logger()


class MintPhase(str, Enum):
    IDLE = "idle"
    ANCHORING = "anchoring"
    GENERATING = "generating"
    CONFIRMING = "confirming"
    SUCCESS = "success"


PHASE_TRANSITIONS: dict[MintPhase, list[MintPhase]] = {
    MintPhase.IDLE: [MintPhase.ANCHORING],
    MintPhase.ANCHORING: [MintPhase.GENERATING, MintPhase.IDLE],
    MintPhase.GENERATING: [MintPhase.CONFIRMING, MintPhase.IDLE],
    MintPhase.CONFIRMING: [MintPhase.SUCCESS, MintPhase.IDLE],
    MintPhase.SUCCESS: [],
}


class ProofAnchor(ABC):
    """External confirmation of a credential. Opaque to the marketplace."""

    @abstractmethod
    async def anchor(self, payload: dict[str, Any]) -> str:
        """Submit the credential payload; returns a receipt."""

    @abstractmethod
    async def confirm(self, receipt: str) -> None:
        """Raise if the receipt is not confirmed."""


class SimulatedAnchor(ProofAnchor):
    """Content-hash receipts with no external system behind them."""

    async def anchor(self, payload: dict[str, Any]) -> str:
        encoded = json.dumps(payload, sort_keys=True, default=str).encode()
        return hashlib.sha256(encoded).hexdigest()

    async def confirm(self, receipt: str) -> None:
        if len(receipt) != 64:
            raise ValueError(f"Malformed receipt: {receipt!r}")


class MintSession:
    """One attempt to mint the badge for one reviewed enrollment."""

    def __init__(self, enrollment: Enrollment, task: Task) -> None:
        self.enrollment = enrollment
        self.task = task
        self.phase = MintPhase.IDLE
        self.history: list[MintPhase] = [MintPhase.IDLE]
        self.badge: Badge | None = None
        self.receipt: str | None = None
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def advance(self, target: MintPhase) -> None:
        if target not in PHASE_TRANSITIONS[self.phase]:
            raise InvalidStateTransitionError(
                f"Invalid transition: {self.phase.value} -> {target.value}",
                current=self.phase.value,
                target=target.value,
            )
        self.phase = target
        self.history.append(target)

    def cancel(self) -> None:
        """Abandon the session. Only possible before minting has started."""
        if self.phase != MintPhase.IDLE:
            raise InvalidStateTransitionError(
                f"Cannot cancel a mint in '{self.phase.value}'",
                current=self.phase.value,
            )
        self._cancelled = True


class BadgeMintingWorkflow:
    def __init__(
        self,
        store: Store,
        clock: PhaseClock,
        settings: Settings,
        anchor: ProofAnchor | None = None,
    ) -> None:
        self._store = store
        self._clock = clock
        self._settings = settings
        self._anchor = anchor or SimulatedAnchor()
        self._inflight: set[asyncio.Task[Badge]] = set()

    async def prepare(self, enrollment_id: str, student_id: str | None = None) -> MintSession:
        """Check eligibility and open an idle session.

        Raises InvalidStateTransitionError unless the enrollment was reviewed
        with the top score, and DuplicateBadgeError if the badge exists.
        """
        enrollment = await load_enrollment(self._store, enrollment_id)
        if student_id is not None and enrollment.student_id != student_id:
            raise NotAuthorizedError("Only the enrolled student can mint this badge", enrollment_id=enrollment_id)
        if (
            enrollment.status != EnrollmentStatus.REVIEWED
            or enrollment.review_score != self._settings.badge_score
            or not enrollment.badge_eligible
        ):
            raise InvalidStateTransitionError(
                "Enrollment is not eligible for a badge",
                enrollment_id=enrollment_id,
                status=enrollment.status.value,
                review_score=enrollment.review_score,
            )
        existing = await self._store.list(Badge, student_id=enrollment.student_id, task_id=enrollment.task_id)
        if existing:
            raise DuplicateBadgeError(
                "Badge already minted for this task",
                student_id=enrollment.student_id,
                task_id=enrollment.task_id,
            )
        task = await load_task(self._store, enrollment.task_id)
        return MintSession(enrollment, task)

    async def run(self, session: MintSession) -> Badge:
        """Drive an idle session to ``success`` and return the stored Badge.

        Cancelling the caller does not stop a mint that has started; the run
        finishes (or fails) in the background and ``aclose`` waits for it.
        """
        if session.cancelled:
            raise InvalidStateTransitionError("Mint session was cancelled")
        if session.phase != MintPhase.IDLE:
            raise InvalidStateTransitionError(
                f"Mint session is already in '{session.phase.value}'",
                current=session.phase.value,
            )
        session.advance(MintPhase.ANCHORING)
        job = asyncio.ensure_future(self._execute(session))
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)
        return await asyncio.shield(job)

    async def mint_badge(self, enrollment_id: str, student_id: str | None = None) -> Badge:
        session = await self.prepare(enrollment_id, student_id)
        return await self.run(session)

    async def _execute(self, session: MintSession) -> Badge:
        unit = self._settings.mint_time_unit_seconds
        enrollment, task = session.enrollment, session.task
        log = logger.bind(enrollment_id=enrollment.id, task_id=task.id)

        try:
            session.receipt = await self._anchor.anchor({
                "student_id": enrollment.student_id,
                "task_id": task.id,
                "teacher_id": task.teacher_id,
                "review_score": enrollment.review_score,
                "reviewed_at": enrollment.reviewed_at,
            })
            await self._clock.sleep(self._settings.mint_anchoring_units * unit)

            session.advance(MintPhase.GENERATING)
            skill = detect_skill(task.title)
            badge = Badge(
                student_id=enrollment.student_id,
                task_id=task.id,
                teacher_id=task.teacher_id,
                skill_verified=skill,
                token_id=generate_token_id(),
                badge_title=skill,
                badge_description=f'Earned for achieving 5-star excellence on "{task.title}"',
                badge_image_url=badge_image_url(skill),
                task_title=task.title,
            )
            await self._clock.sleep(self._settings.mint_generating_units * unit)

            session.advance(MintPhase.CONFIRMING)
            await self._anchor.confirm(session.receipt)
            await self._clock.sleep(self._settings.mint_confirming_units * unit)

            try:
                async with self._store.transaction() as tx:
                    if await tx.list(Badge, student_id=badge.student_id, task_id=badge.task_id):
                        raise DuplicateBadgeError(
                            "Badge already minted for this task",
                            student_id=badge.student_id,
                            task_id=badge.task_id,
                        )
                    await tx.insert(badge)
            except UniqueViolation as exc:
                raise DuplicateBadgeError(
                    "Badge already minted for this task",
                    student_id=badge.student_id,
                    task_id=badge.task_id,
                ) from exc
            session.advance(MintPhase.SUCCESS)
        except DuplicateBadgeError:
            self._reset(session)
            log.info("badge_mint_duplicate")
            raise
        except Exception as exc:
            failed_phase = session.phase
            self._reset(session)
            log.warning("badge_mint_failed", phase=failed_phase.value, error=str(exc))
            raise MintingFailure(
                f"Minting failed during {failed_phase.value}",
                enrollment_id=enrollment.id,
                phase=failed_phase.value,
            ) from exc

        session.badge = badge
        log.info("badge_minted", badge_id=badge.id, token_id=badge.token_id, skill=badge.skill_verified)
        return badge

    @staticmethod
    def _reset(session: MintSession) -> None:
        if session.phase != MintPhase.IDLE:
            session.advance(MintPhase.IDLE)

    async def badges_for(self, student_id: str) -> list[Badge]:
        return await self._store.list(Badge, student_id=student_id, order_by="minted_at", descending=True)

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    async def aclose(self) -> None:
        """Wait for every started mint to finish."""
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
