"""SqlStore tests against a real PostgreSQL database.

Set EDU_TEST_DATABASE_URL (postgresql+asyncpg://...) to run them; the schema
is recreated for every test.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio

from educhain.clock import ManualClock
from educhain.config import Settings
from educhain.container import Marketplace
from educhain.database import Database
from educhain.db.base import Base
from educhain.errors import CapacityExceededError, DuplicateEnrollmentError
from educhain.store.base import ChangeEvent, ChangeKind, UniqueViolation
from educhain.store.records import ProfileRow, RecommendationExplanation, Role
from educhain.store.sql import SqlStore, decode_event, encode_event
from tests.conftest import connect, publish_task

DATABASE_URL = os.environ.get("EDU_TEST_DATABASE_URL")

requires_db = pytest.mark.skipif(DATABASE_URL is None, reason="EDU_TEST_DATABASE_URL not set")


@pytest_asyncio.fixture
async def sql_market(settings: Settings) -> AsyncGenerator[Marketplace, None]:
    database = Database(DATABASE_URL or "", pool_size=5, max_overflow=5)
    await database.connect()
    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    market = Marketplace(settings, SqlStore(database), clock=ManualClock())
    await market.start()
    yield market
    await market.close()

    async with database.engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await database.dispose()


@requires_db
class TestSqlTransactions:
    async def test_round_trip(self, sql_market: Marketplace):
        profile = await connect(sql_market, "0xsql", balance="12.5")
        row = await sql_market.store.get(ProfileRow, profile.id)
        assert row is not None
        assert row.role == Role.STUDENT
        assert row.token_balance == Decimal("12.5")

    async def test_unique_wallet(self, sql_market: Marketplace):
        await connect(sql_market, "0xsql")
        with pytest.raises(UniqueViolation):
            async with sql_market.store.transaction() as tx:
                await tx.insert(ProfileRow(wallet_address="0xsql", role=Role.STUDENT))

    async def test_conditional_update(self, sql_market: Marketplace):
        profile = await connect(sql_market, "0xsql")
        async with sql_market.store.transaction() as tx:
            stale = await tx.update(ProfileRow, profile.id, {"username": "x"}, expect={"username": "y"})
            fresh = await tx.update(ProfileRow, profile.id, {"username": "x"}, expect={"username": None})
        assert stale is None
        assert fresh is not None and fresh.username == "x"

    async def test_upsert_keeps_identity(self, sql_market: Marketplace):
        student = await connect(sql_market, "0xs")
        teacher = await connect(sql_market, "0xt", Role.TEACHER, balance="500")
        task = await publish_task(sql_market, teacher.id)
        first = RecommendationExplanation(user_id=student.id, task_id=task.id, explanation="a", relevance_score=25)
        second = RecommendationExplanation(user_id=student.id, task_id=task.id, explanation="b", relevance_score=50)
        async with sql_market.store.transaction() as tx:
            await tx.upsert(first, on=("user_id", "task_id"))
        async with sql_market.store.transaction() as tx:
            stored = await tx.upsert(second, on=("user_id", "task_id"))
        assert stored.id == first.id
        assert stored.explanation == "b"


@requires_db
class TestSqlConcurrency:
    async def test_capacity_holds_under_contention(self, sql_market: Marketplace):
        teacher = await connect(sql_market, "0xt", Role.TEACHER, balance="500")
        task = await publish_task(sql_market, teacher.id, max_students=2)
        students = [await connect(sql_market, f"0xs{i}") for i in range(6)]

        results = await asyncio.gather(
            *(sql_market.enrollments.enroll(task.id, s.id) for s in students),
            return_exceptions=True,
        )

        enrolled = [r for r in results if not isinstance(r, BaseException)]
        assert len(enrolled) == 2
        assert all(isinstance(r, CapacityExceededError) for r in results if isinstance(r, BaseException))
        stored = await sql_market.tasks.get_task(task.id)
        assert stored.current_students == 2

    async def test_one_open_enrollment_per_pair(self, sql_market: Marketplace):
        teacher = await connect(sql_market, "0xt", Role.TEACHER, balance="500")
        task = await publish_task(sql_market, teacher.id, max_students=5)
        student = await connect(sql_market, "0xs")

        results = await asyncio.gather(
            sql_market.enrollments.enroll(task.id, student.id),
            sql_market.enrollments.enroll(task.id, student.id),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, DuplicateEnrollmentError)) >= 1
        assert len(await sql_market.enrollments.list_enrollments(task_id=task.id)) == 1


class TestChangeEncoding:
    def test_event_survives_the_wire(self):
        row = ProfileRow(wallet_address="0xa", role=Role.BOTH, token_balance=Decimal("1.25"))
        event = decode_event("profiles", encode_event(ChangeEvent(ChangeKind.UPDATE, row)))
        assert event == ChangeEvent(ChangeKind.UPDATE, row)

    def test_unknown_collection(self):
        assert decode_event("nope", "{}") is None
