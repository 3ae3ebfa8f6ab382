"""Repository interface the core depends on.

The core never talks to SQLAlchemy or Redis directly; it is handed a
``Store`` and uses point lookups, equality-filtered lists, transactions with
conditional updates, and change-event subscriptions. ``MemoryStore`` and
``SqlStore`` implement it.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import structlog

from educhain.errors import ConcurrencyConflictError, NotFoundError

logger = structlog.get_logger()

R = TypeVar("R")


class UniqueViolation(Exception):
    """An insert or upsert collided with a unique constraint."""

    def __init__(self, collection: str, detail: str = "") -> None:
        super().__init__(f"unique violation on {collection}: {detail}".rstrip(": "))
        self.collection = collection


class ChangeKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class ChangeEvent:
    """A committed change to one row. ``row`` is the row after the change
    (for deletes, the row as it was)."""

    kind: ChangeKind
    row: Any


class Reader(ABC):
    @abstractmethod
    async def get(self, model: type[R], key: str) -> R | None:
        """Point lookup by primary key."""

    @abstractmethod
    async def list(
        self,
        model: type[R],
        *,
        order_by: str | None = None,
        descending: bool = False,
        **filters: Any,
    ) -> list[R]:
        """Rows whose fields equal every filter value."""


class Transaction(Reader):
    """Writes staged here become visible, and announced, only on commit."""

    @abstractmethod
    async def insert(self, row: R) -> R:
        """Insert a new row. Raises UniqueViolation on collision."""

    @abstractmethod
    async def update(
        self,
        model: type[R],
        key: str,
        values: Mapping[str, Any],
        expect: Mapping[str, Any] | None = None,
    ) -> R | None:
        """Conditionally update one row.

        Applies ``values`` only if the row exists and every field in ``expect``
        still holds its expected value. Returns the updated row, or None when
        the row is missing or a precondition failed.
        """

    @abstractmethod
    async def upsert(self, row: R, on: tuple[str, ...]) -> R:
        """Insert, or overwrite the row matching ``on`` keeping its id and created_at."""

    @abstractmethod
    async def delete(self, model: type[R], key: str) -> R | None:
        """Delete one row, returning it."""


class Store(Reader):
    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[Transaction]:
        """All-or-nothing unit of work. Exceptions roll every write back."""

    @abstractmethod
    def subscribe(self, interests: Mapping[type, Mapping[str, Any]]) -> Subscription:
        """Receive committed changes to the given models matching the filters."""

    async def start(self) -> None:
        """Acquire background resources (change relays, pools)."""

    async def close(self) -> None:
        """Release everything acquired by ``start``."""

    async def ping(self) -> bool:
        return True


_CLOSED = object()


class Subscription:
    """A stream of ``ChangeEvent`` for a set of models and equality filters.

    Use as an async context manager so the listener is released on every exit
    path; iterate it to receive events.
    """

    def __init__(
        self,
        interests: Mapping[type, Mapping[str, Any]],
        on_close: Callable[[Subscription], None],
    ) -> None:
        self.interests = {model: dict(filters) for model, filters in interests.items()}
        self._on_close = on_close
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: ChangeEvent) -> bool:
        filters = self.interests.get(type(event.row))
        if filters is None:
            return False
        return all(getattr(event.row, name, None) == value for name, value in filters.items())

    def push(self, event: ChangeEvent) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def next_event(self) -> ChangeEvent:
        item = await self._queue.get()
        if item is _CLOSED:
            self._queue.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        self._on_close(self)

    def __aiter__(self) -> AsyncIterator[ChangeEvent]:
        return self

    async def __anext__(self) -> ChangeEvent:
        return await self.next_event()

    async def __aenter__(self) -> Subscription:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()


class ChangeFeed:
    """Fans committed change events out to matching subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: set[Subscription] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, interests: Mapping[type, Mapping[str, Any]]) -> Subscription:
        sub = Subscription(interests, self._subscriptions.discard)
        self._subscriptions.add(sub)
        return sub

    def publish(self, event: ChangeEvent) -> int:
        delivered = 0
        for sub in list(self._subscriptions):
            if sub.matches(event):
                sub.push(event)
                delivered += 1
        return delivered

    def close_all(self) -> None:
        for sub in list(self._subscriptions):
            sub.close()


async def compare_and_set(
    tx: Transaction,
    model: type[R],
    key: str,
    mutate: Callable[[R], Mapping[str, Any]],
    *,
    max_retries: int = 16,
) -> R:
    """Read a row, derive new values from it, and apply them conditionally.

    ``mutate`` receives the current row and returns the fields to change; it
    may raise to reject the change (capacity, state, balance). The update only
    lands if those fields still hold the values ``mutate`` saw, otherwise the
    row is re-read and ``mutate`` runs again.
    """
    for attempt in range(max_retries):
        row = await tx.get(model, key)
        if row is None:
            raise NotFoundError(f"{model.__collection__} {key} not found")  # type: ignore[attr-defined]
        values = dict(mutate(row))
        expect = {name: getattr(row, name) for name in values}
        updated = await tx.update(model, key, values, expect=expect)
        if updated is not None:
            return updated
        logger.debug("cas_retry", collection=model.__collection__, key=key, attempt=attempt)  # type: ignore[attr-defined]
    raise ConcurrencyConflictError(
        f"gave up updating {model.__collection__} {key} after {max_retries} attempts"  # type: ignore[attr-defined]
    )
