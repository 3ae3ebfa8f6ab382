"""Builds the marketplace components around one store and one settings object."""

from __future__ import annotations

import asyncio

import redis.asyncio as aioredis
import structlog

from educhain.badges.minting import BadgeMintingWorkflow, ProofAnchor
from educhain.clock import AsyncioClock, PhaseClock
from educhain.config import Settings
from educhain.database import Database
from educhain.enrollment.state_machine import EnrollmentStateMachine
from educhain.ledger.service import StakeLedger
from educhain.profiles.service import ProfileService
from educhain.questions.channel import QuestionAnswerChannel
from educhain.recommendations.engine import RecommendationEngine
from educhain.recommendations.worker import RecommendationRefresher
from educhain.redis_client import create_redis
from educhain.store.base import Store
from educhain.store.memory import MemoryStore
from educhain.store.sql import SqlStore
from educhain.tasks.service import TaskRegistry

logger = structlog.get_logger()


class Marketplace:
    """Every core component, wired to the same store."""

    def __init__(
        self,
        settings: Settings,
        store: Store,
        clock: PhaseClock | None = None,
        anchor: ProofAnchor | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.clock = clock or AsyncioClock()
        self.profiles = ProfileService(store)
        self.ledger = StakeLedger(store, settings)
        self.tasks = TaskRegistry(store, self.ledger)
        self.enrollments = EnrollmentStateMachine(store, self.ledger, settings)
        self.recommendations = RecommendationEngine(store, settings)
        self.badges = BadgeMintingWorkflow(store, self.clock, settings, anchor)
        self.questions = QuestionAnswerChannel(store, settings)
        self.refresher = RecommendationRefresher(store, self.recommendations)
        self._database: Database | None = None
        self._redis: aioredis.Redis | None = None
        self._refresher_task: asyncio.Task[None] | None = None

    @classmethod
    async def open(cls, settings: Settings) -> Marketplace:
        """Connect to the configured backend and build the marketplace."""
        if settings.store_backend == "memory":
            return cls(settings, MemoryStore())

        database = Database.from_settings(settings)
        await database.connect()
        redis_client = create_redis(settings.redis_url)
        market = cls(
            settings,
            SqlStore(database, redis_client, channel_prefix=settings.change_channel_prefix),
        )
        market._database = database
        market._redis = redis_client
        return market

    async def start(self) -> None:
        await self.store.start()
        if self.settings.recommendation_refresh_enabled and self._refresher_task is None:
            self._refresher_task = asyncio.create_task(self.refresher.run())
        logger.info("marketplace_started", backend=type(self.store).__name__)

    async def close(self) -> None:
        if self._refresher_task is not None:
            await self.refresher.stop()
            self._refresher_task.cancel()
            try:
                await self._refresher_task
            except asyncio.CancelledError:
                pass
            self._refresher_task = None
        await self.badges.aclose()
        await self.store.close()
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._database is not None:
            await self._database.dispose()
            self._database = None
        logger.info("marketplace_closed")
