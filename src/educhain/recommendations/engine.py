"""Task recommendations with human-readable explanations.

Each candidate task is checked against four independent factors; every
factor that holds adds 25 to the relevance score and one clause to the
explanation. Explanations are persisted per (student, task) so the UI can
show why a task was suggested.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from educhain.config import Settings
from educhain.errors import NotAuthorizedError, NotFoundError
from educhain.profiles.models import can_learn
from educhain.profiles.service import load_profile
from educhain.store.base import Store
from educhain.store.records import (
    Difficulty,
    ProfileRow,
    RecommendationExplanation,
    Task,
    TaskStatus,
    utcnow,
)

logger = structlog.get_logger()

POINTS_PER_FACTOR = 25
EXPLANATION_PREFIX = "This task was recommended because: "
NO_MATCH_EXPLANATION = "No specific match with your profile yet."


def skill_tier(tasks_completed: int, settings: Settings) -> Difficulty:
    if tasks_completed < settings.intermediate_tier_threshold:
        return Difficulty.BEGINNER
    if tasks_completed < settings.advanced_tier_threshold:
        return Difficulty.INTERMEDIATE
    return Difficulty.ADVANCED


@dataclass(frozen=True)
class Recommendation:
    task: Task
    relevance_score: int
    explanation: str
    factors: dict[str, Any] = field(default_factory=dict)


def score_task(
    task: Task,
    tier: Difficulty,
    teacher_reputation: float,
    settings: Settings,
) -> Recommendation:
    """Score one task for a student at ``tier``. Pure; touches no store."""
    reasons: list[str] = []
    factors: dict[str, Any] = {}

    if task.difficulty == tier:
        reasons.append(f"it matches your current skill level ({tier.value})")
        factors["difficulty_match"] = True

    rate = task.successful_completions / task.total_attempts if task.total_attempts > 0 else 0.0
    if rate > settings.min_success_rate:
        reasons.append(f"it has a good success rate ({rate * 100:.0f}%)")
        factors["high_success_rate"] = round(rate * 100, 2)

    if task.student_stake_required > 0:
        ratio = task.reward_amount / task.student_stake_required
        if ratio > Decimal(str(settings.min_reward_ratio)):
            reasons.append(f"it offers a favorable reward ratio ({ratio:.1f}x)")
            factors["good_reward_ratio"] = round(float(ratio), 4)
    elif task.reward_amount > 0:
        reasons.append("it pays a reward without requiring a stake")
        factors["good_reward_ratio"] = None

    if teacher_reputation > settings.min_teacher_reputation:
        reasons.append(f"the teacher has a strong reputation ({teacher_reputation:g})")
        factors["reputable_teacher"] = teacher_reputation

    explanation = EXPLANATION_PREFIX + ", ".join(reasons) + "." if reasons else NO_MATCH_EXPLANATION
    return Recommendation(
        task=task,
        relevance_score=POINTS_PER_FACTOR * len(reasons),
        explanation=explanation,
        factors=factors,
    )


class RecommendationEngine:
    def __init__(self, store: Store, settings: Settings) -> None:
        self._store = store
        self._settings = settings

    async def recommend(self, student_id: str, limit: int | None = None) -> list[Recommendation]:
        """Score every active task for a student and store the explanations.

        Returns the best matches first (ties broken by newest task), at most
        ``limit`` of them.
        """
        student = await load_profile(self._store, student_id)
        if not can_learn(student):
            raise NotAuthorizedError("Recommendations are for students", profile_id=student_id)
        tier = skill_tier(student.total_tasks_completed, self._settings)

        tasks = [
            t for t in await self._store.list(Task, status=TaskStatus.ACTIVE)
            if t.teacher_id != student_id
        ]
        reputations: dict[str, float] = {}
        for teacher_id in {t.teacher_id for t in tasks}:
            teacher = await self._store.get(ProfileRow, teacher_id)
            reputations[teacher_id] = teacher.reputation_score if teacher is not None else 0.0

        scored = [score_task(t, tier, reputations[t.teacher_id], self._settings) for t in tasks]
        written = await self._persist(student_id, scored)
        logger.info(
            "recommendations_computed",
            student_id=student_id,
            tier=tier.value,
            candidates=len(scored),
            written=written,
        )

        scored.sort(key=lambda r: (r.relevance_score, r.task.created_at), reverse=True)
        limit = self._settings.recommendation_limit if limit is None else limit
        return scored[:limit]

    async def _persist(self, student_id: str, scored: list[Recommendation]) -> int:
        """Upsert explanations, skipping rows that would not change."""
        written = 0
        async with self._store.transaction() as tx:
            current = {
                row.task_id: row
                for row in await tx.list(RecommendationExplanation, user_id=student_id)
            }
            for rec in scored:
                existing = current.get(rec.task.id)
                if (
                    existing is not None
                    and existing.explanation == rec.explanation
                    and existing.relevance_score == rec.relevance_score
                    and existing.factors == rec.factors
                ):
                    continue
                await tx.upsert(
                    RecommendationExplanation(
                        user_id=student_id,
                        task_id=rec.task.id,
                        explanation=rec.explanation,
                        relevance_score=rec.relevance_score,
                        factors=rec.factors,
                        computed_at=utcnow(),
                    ),
                    on=("user_id", "task_id"),
                )
                written += 1
        return written

    async def explanation_for(self, student_id: str, task_id: str) -> RecommendationExplanation:
        rows = await self._store.list(RecommendationExplanation, user_id=student_id, task_id=task_id)
        if not rows:
            raise NotFoundError(
                f"No recommendation for task {task_id}",
                student_id=student_id,
                task_id=task_id,
            )
        return rows[0]
