"""Shared test fixtures.

Everything runs on ``MemoryStore`` and ``ManualClock``; the SQL store tests in
``integration/test_sql_store.py`` bring their own Postgres fixtures.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from educhain.clock import ManualClock
from educhain.config import Settings
from educhain.container import Marketplace
from educhain.main import create_app
from educhain.profiles.models import Profile
from educhain.store.memory import MemoryStore
from educhain.store.records import Difficulty, Role, Task

TEACHER_WALLET = "0xteacher000000000000000000000000000000001"
STUDENT_WALLET = "0xstudent000000000000000000000000000000001"


def wallet_headers(wallet: str) -> dict[str, str]:
    return {"X-Wallet-Address": wallet}


async def connect(
    market: Marketplace,
    wallet: str,
    role: Role = Role.STUDENT,
    balance: str = "100",
    username: str | None = None,
) -> Profile:
    profile, _ = await market.profiles.connect_wallet(
        wallet, role, username=username, opening_balance=Decimal(balance),
    )
    return profile


async def publish_task(market: Marketplace, teacher_id: str, **overrides: object) -> Task:
    fields: dict[str, object] = {
        "title": "Intro to Python loops",
        "difficulty": Difficulty.BEGINNER,
        "category": "programming",
        "stake_amount": Decimal("100"),
        "reward_amount": Decimal("20"),
        "student_stake_required": Decimal("10"),
        "max_students": 2,
    }
    fields.update(overrides)
    return await market.tasks.create_task(teacher_id, **fields)  # type: ignore[arg-type]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        store_backend="memory",
        log_format="console",
        recommendation_refresh_enabled=False,
    )


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest_asyncio.fixture
async def market(settings: Settings, store: MemoryStore, clock: ManualClock) -> AsyncGenerator[Marketplace, None]:
    market = Marketplace(settings, store, clock=clock)
    await market.start()
    yield market
    await market.close()


@pytest_asyncio.fixture
async def teacher(market: Marketplace) -> Profile:
    return await connect(market, TEACHER_WALLET, Role.TEACHER, balance="1000", username="prof")


@pytest_asyncio.fixture
async def student(market: Marketplace) -> Profile:
    return await connect(market, STUDENT_WALLET, Role.STUDENT, balance="100", username="learner")


@pytest_asyncio.fixture
async def task(market: Marketplace, teacher: Profile) -> Task:
    return await publish_task(market, teacher.id)


@pytest_asyncio.fixture
async def client(market: Marketplace) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against an app wired to the in-memory marketplace."""
    app = create_app(market)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
