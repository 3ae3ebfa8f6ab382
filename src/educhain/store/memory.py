"""In-process store used by tests and single-node local runs.

Transactions are serialized by one ``asyncio.Lock`` and work on
copy-on-write snapshots of the tables, so a failed transaction simply drops
its snapshot. Each store call yields to the event loop once, which keeps
interleavings between concurrent operations realistic.
"""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from educhain.store.base import (
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    Store,
    Subscription,
    Transaction,
    UniqueViolation,
)

R = TypeVar("R")

Tables = dict[type, dict[str, Any]]


def _select(
    rows: Mapping[str, Any],
    order_by: str | None,
    descending: bool,
    filters: Mapping[str, Any],
) -> list[Any]:
    selected = [row for row in rows.values() if all(getattr(row, k) == v for k, v in filters.items())]
    if order_by is not None:
        # stable sort keeps insertion order for ties
        selected.sort(key=lambda row: getattr(row, order_by), reverse=descending)
    return selected


class _MemoryTransaction(Transaction):
    def __init__(self, tables: Tables, latency: float) -> None:
        self.tables = tables
        self.events: list[ChangeEvent] = []
        self._latency = latency

    def _rows(self, model: type) -> dict[str, Any]:
        return self.tables.setdefault(model, {})

    async def get(self, model: type[R], key: str) -> R | None:
        await asyncio.sleep(self._latency)
        return self._rows(model).get(key)

    async def list(
        self,
        model: type[R],
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[R]:
        await asyncio.sleep(self._latency)
        return _select(self._rows(model), order_by, descending, filters)

    def _check_unique(self, row: Any) -> None:
        rows = self._rows(type(row))
        for columns in getattr(type(row), "__unique__", ()):
            wanted = tuple(getattr(row, c) for c in columns)
            for other in rows.values():
                if other.id != row.id and tuple(getattr(other, c) for c in columns) == wanted:
                    raise UniqueViolation(type(row).__collection__, ", ".join(columns))

    async def insert(self, row: R) -> R:
        await asyncio.sleep(self._latency)
        rows = self._rows(type(row))
        if row.id in rows:  # type: ignore[attr-defined]
            raise UniqueViolation(type(row).__collection__, "id")  # type: ignore[attr-defined]
        self._check_unique(row)
        rows[row.id] = row  # type: ignore[attr-defined]
        self.events.append(ChangeEvent(ChangeKind.INSERT, row))
        return row

    async def update(
        self,
        model: type[R],
        key: str,
        values: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> R | None:
        await asyncio.sleep(self._latency)
        rows = self._rows(model)
        current = rows.get(key)
        if current is None:
            return None
        if expect and any(getattr(current, k) != v for k, v in expect.items()):
            return None
        updated = dataclasses.replace(current, **values)
        self._check_unique(updated)
        rows[key] = updated
        self.events.append(ChangeEvent(ChangeKind.UPDATE, updated))
        return updated

    async def upsert(self, row: R, on: tuple[str, ...]) -> R:
        rows = self._rows(type(row))
        wanted = tuple(getattr(row, c) for c in on)
        for existing in rows.values():
            if tuple(getattr(existing, c) for c in on) == wanted:
                values = {
                    f.name: getattr(row, f.name)
                    for f in dataclasses.fields(row)  # type: ignore[arg-type]
                    if f.name not in ("id", "created_at")
                }
                updated = await self.update(type(row), existing.id, values)
                assert updated is not None
                return updated
        return await self.insert(row)

    async def delete(self, model: type[R], key: str) -> R | None:
        await asyncio.sleep(self._latency)
        row = self._rows(model).pop(key, None)
        if row is not None:
            self.events.append(ChangeEvent(ChangeKind.DELETE, row))
        return row


class MemoryStore(Store):
    """Dict-backed ``Store`` with the same transactional contract as ``SqlStore``."""

    def __init__(self, latency: float = 0.0) -> None:
        self._tables: Tables = {}
        self._lock = asyncio.Lock()
        self._feed = ChangeFeed()
        self._latency = latency

    @property
    def subscriber_count(self) -> int:
        return self._feed.subscriber_count

    async def get(self, model: type[R], key: str) -> R | None:
        await asyncio.sleep(self._latency)
        return self._tables.get(model, {}).get(key)

    async def list(
        self,
        model: type[R],
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[R]:
        await asyncio.sleep(self._latency)
        return _select(self._tables.get(model, {}), order_by, descending, filters)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._lock:
            tx = _MemoryTransaction({model: dict(rows) for model, rows in self._tables.items()}, self._latency)
            yield tx
            self._tables = tx.tables
        for event in tx.events:
            self._feed.publish(event)

    def subscribe(self, interests: Mapping[type, Mapping[str, Any]]) -> Subscription:
        return self._feed.subscribe(interests)

    async def close(self) -> None:
        self._feed.close_all()
