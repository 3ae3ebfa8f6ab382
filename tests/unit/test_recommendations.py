"""Recommendation engine tests: scoring factors, persistence, refresh."""

import asyncio
from decimal import Decimal

import pytest

from educhain.errors import NotAuthorizedError, NotFoundError
from educhain.recommendations.engine import (
    NO_MATCH_EXPLANATION,
    score_task,
    skill_tier,
)
from educhain.recommendations.worker import RecommendationRefresher
from educhain.store.records import Difficulty, RecommendationExplanation, Role, Task
from tests.conftest import connect, publish_task


def _task(**overrides) -> Task:
    fields = {
        "teacher_id": "teacher-1",
        "title": "Loops",
        "difficulty": Difficulty.BEGINNER,
        "category": "programming",
        "stake_amount": Decimal("100"),
        "reward_amount": Decimal("20"),
        "student_stake_required": Decimal("10"),
        "max_students": 5,
        "total_attempts": 10,
        "successful_completions": 8,
    }
    fields.update(overrides)
    return Task(**fields)


class TestSkillTier:
    @pytest.mark.parametrize(
        "completed,tier",
        [
            (0, Difficulty.BEGINNER),
            (4, Difficulty.BEGINNER),
            (5, Difficulty.INTERMEDIATE),
            (19, Difficulty.INTERMEDIATE),
            (20, Difficulty.ADVANCED),
        ],
    )
    def test_thresholds(self, settings, completed, tier):
        assert skill_tier(completed, settings) == tier


class TestScoreTask:
    """Each factor adds 25 points and one clause."""

    def test_all_factors(self, settings):
        rec = score_task(_task(), Difficulty.BEGINNER, 80.0, settings)
        assert rec.relevance_score == 100
        assert rec.explanation == (
            "This task was recommended because: "
            "it matches your current skill level (beginner), "
            "it has a good success rate (80%), "
            "it offers a favorable reward ratio (2.0x), "
            "the teacher has a strong reputation (80)."
        )
        assert rec.factors == {
            "difficulty_match": True,
            "high_success_rate": 80.0,
            "good_reward_ratio": 2.0,
            "reputable_teacher": 80.0,
        }

    def test_no_factors(self, settings):
        task = _task(
            difficulty=Difficulty.ADVANCED,
            total_attempts=0,
            successful_completions=0,
            reward_amount=Decimal("10"),
        )
        rec = score_task(task, Difficulty.BEGINNER, 0.0, settings)
        assert rec.relevance_score == 0
        assert rec.explanation == NO_MATCH_EXPLANATION
        assert rec.factors == {}

    def test_thresholds_are_strict(self, settings):
        task = _task(
            difficulty=Difficulty.ADVANCED,
            total_attempts=10,
            successful_completions=6,
            reward_amount=Decimal("15"),
        )
        rec = score_task(task, Difficulty.BEGINNER, 50.0, settings)
        assert rec.relevance_score == 0

    def test_reward_without_stake(self, settings):
        task = _task(
            difficulty=Difficulty.ADVANCED,
            total_attempts=0,
            successful_completions=0,
            student_stake_required=Decimal("0"),
        )
        rec = score_task(task, Difficulty.BEGINNER, 0.0, settings)
        assert rec.relevance_score == 25
        assert rec.factors == {"good_reward_ratio": None}
        assert "without requiring a stake" in rec.explanation


class TestRecommend:
    async def test_ranks_matching_tasks_first(self, market, teacher, student):
        hard = await publish_task(market, teacher.id, difficulty=Difficulty.ADVANCED, reward_amount=Decimal("5"))
        easy = await publish_task(market, teacher.id, difficulty=Difficulty.BEGINNER, reward_amount=Decimal("5"))

        recs = await market.recommendations.recommend(student.id)

        assert [r.task.id for r in recs] == [easy.id, hard.id]
        assert recs[0].relevance_score == 25
        assert recs[1].relevance_score == 0

    async def test_ties_prefer_newest(self, market, teacher, student):
        older = await publish_task(market, teacher.id)
        newer = await publish_task(market, teacher.id)
        recs = await market.recommendations.recommend(student.id)
        assert [r.task.id for r in recs] == [newer.id, older.id]

    async def test_limit(self, market, teacher, student):
        for _ in range(3):
            await publish_task(market, teacher.id)
        assert len(await market.recommendations.recommend(student.id, limit=2)) == 2

    async def test_explanations_persisted_once(self, market, student, task):
        await market.recommendations.recommend(student.id)
        first = await market.recommendations.explanation_for(student.id, task.id)

        await market.recommendations.recommend(student.id)
        rows = await market.store.list(RecommendationExplanation, user_id=student.id)
        assert len(rows) == 1
        assert rows[0].computed_at == first.computed_at

    async def test_changed_score_rewrites_row(self, market, teacher, student, task):
        await market.recommendations.recommend(student.id)
        before = await market.recommendations.explanation_for(student.id, task.id)

        other = await connect(market, "0xpeer")
        enrollment = await market.enrollments.enroll(task.id, other.id)
        await market.enrollments.submit(enrollment.id, "done")
        await market.enrollments.review(enrollment.id, 5)
        await market.recommendations.recommend(student.id)

        after = await market.recommendations.explanation_for(student.id, task.id)
        assert after.id == before.id
        assert after.relevance_score == before.relevance_score + 50
        assert after.factors["high_success_rate"] == 100.0
        assert after.factors["reputable_teacher"] == 100.0

    async def test_reviews_build_teacher_reputation(self, market, teacher, student, task):
        recs = await market.recommendations.recommend(student.id)
        assert "reputable_teacher" not in recs[0].factors

        other = await connect(market, "0xpeer")
        enrollment = await market.enrollments.enroll(task.id, other.id)
        await market.enrollments.submit(enrollment.id, "done")
        await market.enrollments.review(enrollment.id, 4)

        assert (await market.profiles.get_profile(teacher.id)).reputation_score == 80.0
        recs = await market.recommendations.recommend(student.id)
        assert recs[0].factors["reputable_teacher"] == 80.0
        assert "the teacher has a strong reputation (80)" in recs[0].explanation

    async def test_own_tasks_excluded(self, market):
        both = await connect(market, "0xboth", Role.BOTH, balance="500")
        await publish_task(market, both.id)
        assert await market.recommendations.recommend(both.id) == []

    async def test_teachers_get_nothing(self, market, teacher):
        with pytest.raises(NotAuthorizedError):
            await market.recommendations.recommend(teacher.id)

    async def test_missing_explanation(self, market, student):
        with pytest.raises(NotFoundError):
            await market.recommendations.explanation_for(student.id, "missing")


class TestRefresher:
    """Reviews trigger a background re-score for the reviewed student."""

    async def test_review_triggers_refresh(self, market, store, student, task):
        refresher = RecommendationRefresher(store, market.recommendations)
        runner = asyncio.create_task(refresher.run())
        await asyncio.sleep(0)

        enrollment = await market.enrollments.enroll(task.id, student.id)
        await market.enrollments.submit(enrollment.id, "done")
        await market.enrollments.review(enrollment.id, 5)

        for _ in range(500):
            if refresher.refreshed:
                break
            await asyncio.sleep(0)
        await refresher.stop()
        await runner

        assert refresher.refreshed == 1
        rows = await store.list(RecommendationExplanation, user_id=student.id)
        assert [r.task_id for r in rows] == [task.id]
