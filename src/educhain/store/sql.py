"""PostgreSQL-backed store.

Each transaction is one ``AsyncSession.begin()`` block. Conditional updates
are single ``UPDATE ... WHERE id = :id AND <expected values> RETURNING *``
statements, so two writers racing on the same row cannot both win. Committed
changes are published to Redis (``changes:<collection>``) and relayed back
into the local ``ChangeFeed`` by ``ChangeRelay``, which lets every API process
see every other process's writes.
"""

from __future__ import annotations

import asyncio
import dataclasses
import json
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import redis.asyncio as aioredis
import structlog
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import Table, insert, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from educhain.database import Database
from educhain.db import models as _models  # noqa: F401  (registers tables on Base.metadata)
from educhain.db.base import Base
from educhain.store.base import (
    ChangeEvent,
    ChangeFeed,
    ChangeKind,
    Store,
    Subscription,
    Transaction,
    UniqueViolation,
)
from educhain.store.records import RECORDS_BY_COLLECTION

logger = structlog.get_logger()

R = TypeVar("R")

UNIQUE_VIOLATION_SQLSTATE = "23505"

_adapters: dict[type, TypeAdapter[Any]] = {}


def _adapter(model: type) -> TypeAdapter[Any]:
    if model not in _adapters:
        _adapters[model] = TypeAdapter(model)
    return _adapters[model]


def _table(model: type) -> Table:
    return Base.metadata.tables[model.__collection__]  # type: ignore[attr-defined]


def _to_columns(values: Mapping[str, Any]) -> dict[str, Any]:
    return {name: list(value) if isinstance(value, tuple) else value for name, value in values.items()}


def _row_columns(row: Any) -> dict[str, Any]:
    return _to_columns({f.name: getattr(row, f.name) for f in dataclasses.fields(row)})


def _from_mapping(model: type[R], mapping: Mapping[str, Any]) -> R:
    values = {}
    for f in dataclasses.fields(model):  # type: ignore[arg-type]
        value = mapping[f.name]
        values[f.name] = tuple(value) if isinstance(value, list) else value
    return model(**values)


def _is_unique_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code is not None:
        return code == UNIQUE_VIOLATION_SQLSTATE
    return "unique" in str(orig).lower()


def encode_event(event: ChangeEvent) -> str:
    """Serialize a change event for the Redis channel."""
    return json.dumps({
        "kind": event.kind.value,
        "row": _adapter(type(event.row)).dump_python(event.row, mode="json"),
    })


def decode_event(collection: str, payload: str) -> ChangeEvent | None:
    model = RECORDS_BY_COLLECTION.get(collection)
    if model is None:
        return None
    data = json.loads(payload)
    return ChangeEvent(ChangeKind(data["kind"]), _adapter(model).validate_python(data["row"]))


class _SqlTransaction(Transaction):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self.events: list[ChangeEvent] = []

    async def get(self, model: type[R], key: str) -> R | None:
        table = _table(model)
        result = await self._session.execute(select(table).where(table.c.id == key))
        mapping = result.mappings().one_or_none()
        return _from_mapping(model, mapping) if mapping is not None else None

    async def list(
        self,
        model: type[R],
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[R]:
        return await _select_rows(self._session, model, order_by, descending, filters)

    async def insert(self, row: R) -> R:
        table = _table(type(row))
        try:
            await self._session.execute(insert(table).values(**_row_columns(row)))
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise UniqueViolation(table.name, str(exc.orig)) from exc
            raise
        self.events.append(ChangeEvent(ChangeKind.INSERT, row))
        return row

    async def update(
        self,
        model: type[R],
        key: str,
        values: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> R | None:
        table = _table(model)
        conditions = [table.c.id == key]
        conditions.extend(table.c[name] == value for name, value in (expect or {}).items())
        stmt = update(table).where(*conditions).values(**_to_columns(values)).returning(*table.c)
        try:
            result = await self._session.execute(stmt)
        except IntegrityError as exc:
            if _is_unique_violation(exc):
                raise UniqueViolation(table.name, str(exc.orig)) from exc
            raise
        mapping = result.mappings().one_or_none()
        if mapping is None:
            return None
        row = _from_mapping(model, mapping)
        self.events.append(ChangeEvent(ChangeKind.UPDATE, row))
        return row

    async def upsert(self, row: R, on: tuple[str, ...]) -> R:
        table = _table(type(row))
        columns = _row_columns(row)
        stmt = pg_insert(table).values(**columns)
        stmt = stmt.on_conflict_do_update(
            index_elements=list(on),
            set_={name: stmt.excluded[name] for name in columns if name not in ("id", "created_at")},
        ).returning(*table.c)
        result = await self._session.execute(stmt)
        stored = _from_mapping(type(row), result.mappings().one())
        kind = ChangeKind.INSERT if stored.id == row.id else ChangeKind.UPDATE  # type: ignore[attr-defined]
        self.events.append(ChangeEvent(kind, stored))
        return stored

    async def delete(self, model: type[R], key: str) -> R | None:
        table = _table(model)
        result = await self._session.execute(table.delete().where(table.c.id == key).returning(*table.c))
        mapping = result.mappings().one_or_none()
        if mapping is None:
            return None
        row = _from_mapping(model, mapping)
        self.events.append(ChangeEvent(ChangeKind.DELETE, row))
        return row


async def _select_rows(
    session: AsyncSession,
    model: type[R],
    order_by: str | None,
    descending: bool,
    filters: Mapping[str, Any],
) -> list[R]:
    table = _table(model)
    stmt = select(table).where(*[table.c[name] == value for name, value in filters.items()])
    if order_by is not None:
        column = table.c[order_by]
        stmt = stmt.order_by(column.desc() if descending else column.asc())
    result = await session.execute(stmt)
    return [_from_mapping(model, mapping) for mapping in result.mappings()]


class ChangeRelay:
    """Subscribes to the Redis change channels and feeds the local ChangeFeed."""

    def __init__(self, redis_client: aioredis.Redis, feed: ChangeFeed, prefix: str) -> None:
        self.redis = redis_client
        self._feed = feed
        self._prefix = prefix
        self._running = False

    async def start(self) -> None:
        """Listen until ``stop`` is called."""
        self._running = True
        pubsub = self.redis.pubsub()
        pattern = f"{self._prefix}:*"
        await pubsub.psubscribe(pattern)
        logger.info("change_relay_started", pattern=pattern)

        try:
            while self._running:
                message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if message is None:
                    continue

                channel = message.get("channel", "")
                if isinstance(channel, bytes):
                    channel = channel.decode()
                collection = channel.split(":", 1)[-1]

                try:
                    event = decode_event(collection, message.get("data", ""))
                except (json.JSONDecodeError, ValidationError, KeyError, ValueError):
                    logger.warning("change_relay_invalid_message", channel=channel)
                    continue
                if event is None:
                    continue

                delivered = self._feed.publish(event)
                if delivered:
                    logger.debug("change_relayed", collection=collection, kind=event.kind.value, recipients=delivered)
        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("change_relay_stopped")

    async def stop(self) -> None:
        """Signal the relay to stop."""
        self._running = False


class SqlStore(Store):
    """``Store`` over async SQLAlchemy with Redis-relayed change events.

    Without a Redis client, change events are delivered in-process only.
    """

    def __init__(
        self,
        database: Database,
        redis_client: aioredis.Redis | None = None,
        *,
        channel_prefix: str = "changes",
    ) -> None:
        self._db = database
        self._redis = redis_client
        self._prefix = channel_prefix
        self._feed = ChangeFeed()
        self._relay: ChangeRelay | None = None
        self._relay_task: asyncio.Task[None] | None = None

    async def start(self) -> None:
        if self._redis is not None and self._relay is None:
            self._relay = ChangeRelay(self._redis, self._feed, self._prefix)
            self._relay_task = asyncio.create_task(self._relay.start())

    async def close(self) -> None:
        if self._relay is not None and self._relay_task is not None:
            await self._relay.stop()
            self._relay_task.cancel()
            try:
                await self._relay_task
            except asyncio.CancelledError:
                pass
            self._relay = None
            self._relay_task = None
        self._feed.close_all()

    async def ping(self) -> bool:
        async with self._db.session() as session:
            await session.execute(text("SELECT 1"))
        if self._redis is not None:
            await self._redis.ping()
        return True

    async def get(self, model: type[R], key: str) -> R | None:
        async with self._db.session() as session:
            return await _SqlTransaction(session).get(model, key)

    async def list(
        self,
        model: type[R],
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[R]:
        async with self._db.session() as session:
            return await _select_rows(session, model, order_by, descending, filters)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[Transaction]:
        async with self._db.session() as session:
            async with session.begin():
                tx = _SqlTransaction(session)
                yield tx
        await self._announce(tx.events)

    async def _announce(self, events: list[ChangeEvent]) -> None:
        if self._redis is None:
            for event in events:
                self._feed.publish(event)
            return
        for event in events:
            channel = f"{self._prefix}:{type(event.row).__collection__}"
            try:
                await self._redis.publish(channel, encode_event(event))
            except Exception:
                # the write is committed; subscribers resync on their next load
                logger.warning("change_publish_failed", channel=channel, exc_info=True)

    def subscribe(self, interests: Mapping[type, Mapping[str, Any]]) -> Subscription:
        return self._feed.subscribe(interests)
