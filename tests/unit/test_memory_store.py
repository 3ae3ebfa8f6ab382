"""MemoryStore contract tests: transactions, conditional updates, change feed."""

import dataclasses
from decimal import Decimal

import pytest

from educhain.errors import ConcurrencyConflictError, NotFoundError
from educhain.store.base import ChangeKind, UniqueViolation, compare_and_set
from educhain.store.memory import MemoryStore
from educhain.store.records import ProfileRow, RecommendationExplanation, Role

pytestmark = pytest.mark.asyncio


@pytest.fixture
def store():
    return MemoryStore()


async def _insert(store, **fields):
    row = ProfileRow(**{"wallet_address": "0xa", "role": Role.STUDENT, **fields})
    async with store.transaction() as tx:
        await tx.insert(row)
    return row


class TestTransactions:
    async def test_insert_get_list(self, store):
        a = await _insert(store, wallet_address="0xa", username="b")
        b = await _insert(store, wallet_address="0xb", username="a")

        assert await store.get(ProfileRow, a.id) == a
        assert await store.list(ProfileRow, username="a") == [b]
        ordered = await store.list(ProfileRow, order_by="username")
        assert [r.id for r in ordered] == [b.id, a.id]

    async def test_unique_violation(self, store):
        await _insert(store, wallet_address="0xa")
        with pytest.raises(UniqueViolation):
            await _insert(store, wallet_address="0xa")

    async def test_exception_rolls_back(self, store):
        row = ProfileRow(wallet_address="0xa", role=Role.STUDENT)
        with pytest.raises(RuntimeError):
            async with store.transaction() as tx:
                await tx.insert(row)
                raise RuntimeError("abort")
        assert await store.get(ProfileRow, row.id) is None

    async def test_update_with_failed_precondition(self, store):
        row = await _insert(store)
        async with store.transaction() as tx:
            result = await tx.update(ProfileRow, row.id, {"username": "x"}, expect={"username": "other"})
        assert result is None
        assert (await store.get(ProfileRow, row.id)).username is None

    async def test_upsert_keeps_identity(self, store):
        first = RecommendationExplanation(user_id="u", task_id="t", explanation="a", relevance_score=25)
        second = RecommendationExplanation(user_id="u", task_id="t", explanation="b", relevance_score=50)
        async with store.transaction() as tx:
            await tx.upsert(first, on=("user_id", "task_id"))
        async with store.transaction() as tx:
            stored = await tx.upsert(second, on=("user_id", "task_id"))

        assert stored.id == first.id
        assert stored.created_at == first.created_at
        assert stored.explanation == "b"
        assert len(await store.list(RecommendationExplanation)) == 1

    async def test_delete(self, store):
        row = await _insert(store)
        async with store.transaction() as tx:
            assert await tx.delete(ProfileRow, row.id) == row
        assert await store.get(ProfileRow, row.id) is None


class TestCompareAndSet:
    async def test_retries_after_lost_race(self, store):
        row = await _insert(store, token_balance=Decimal("10"))
        async with store.transaction() as tx:
            real_update = tx.update
            calls = []

            async def flaky_update(model, key, values, expect=None):
                calls.append(values)
                if len(calls) == 1:
                    return None
                return await real_update(model, key, values, expect)

            tx.update = flaky_update
            updated = await compare_and_set(
                tx, ProfileRow, row.id, lambda r: {"token_balance": r.token_balance + 5},
            )
        assert updated.token_balance == Decimal("15")
        assert len(calls) == 2

    async def test_gives_up(self, store):
        row = await _insert(store)
        async with store.transaction() as tx:
            async def always_stale(model, key, values, expect=None):
                return None

            tx.update = always_stale
            with pytest.raises(ConcurrencyConflictError):
                await compare_and_set(tx, ProfileRow, row.id, lambda r: {"username": "x"}, max_retries=3)

    async def test_missing_row(self, store):
        async with store.transaction() as tx:
            with pytest.raises(NotFoundError):
                await compare_and_set(tx, ProfileRow, "missing", lambda r: {})


class TestChangeFeed:
    async def test_committed_changes_are_delivered(self, store):
        async with store.subscribe({ProfileRow: {"role": Role.TEACHER}}) as sub:
            await _insert(store, wallet_address="0xs", role=Role.STUDENT)
            teacher = await _insert(store, wallet_address="0xt", role=Role.TEACHER)
            event = await sub.next_event()
        assert event.kind == ChangeKind.INSERT
        assert event.row == teacher

    async def test_rolled_back_changes_are_not_delivered(self, store):
        async with store.subscribe({ProfileRow: {}}) as sub:
            with pytest.raises(RuntimeError):
                async with store.transaction() as tx:
                    await tx.insert(ProfileRow(wallet_address="0xa", role=Role.STUDENT))
                    raise RuntimeError("abort")
            row = await _insert(store, wallet_address="0xb")
            event = await sub.next_event()
        assert event.row == row

    async def test_update_event_carries_new_row(self, store):
        row = await _insert(store)
        async with store.subscribe({ProfileRow: {}}) as sub:
            async with store.transaction() as tx:
                await tx.update(ProfileRow, row.id, {"username": "new"})
            event = await sub.next_event()
        assert event.kind == ChangeKind.UPDATE
        assert event.row == dataclasses.replace(row, username="new")

    async def test_close_ends_iteration(self, store):
        sub = store.subscribe({ProfileRow: {}})
        assert store.subscriber_count == 1
        await store.close()
        assert sub.closed
        assert [event async for event in sub] == []
        assert store.subscriber_count == 0
