"""Background re-scoring of recommendations.

Listens for enrollments reaching ``reviewed`` and recomputes the reviewed
student's recommendations, since their tier, the task's success rate and the
teacher's standing may all have moved.
"""

from __future__ import annotations

import asyncio
import logging

from educhain.errors import MarketplaceError
from educhain.recommendations.engine import RecommendationEngine
from educhain.store.base import ChangeKind, Store, Subscription
from educhain.store.records import Enrollment, EnrollmentStatus

logger = logging.getLogger(__name__)


class RecommendationRefresher:
    def __init__(self, store: Store, engine: RecommendationEngine) -> None:
        self._store = store
        self._engine = engine
        self._subscription: Subscription | None = None
        self.refreshed = 0

    async def run(self) -> None:
        """Consume review events until ``stop`` is called."""
        self._subscription = self._store.subscribe({Enrollment: {"status": EnrollmentStatus.REVIEWED}})
        logger.info("Recommendation refresher started")
        try:
            async with self._subscription as events:
                async for event in events:
                    if event.kind != ChangeKind.UPDATE:
                        continue
                    student_id = event.row.student_id
                    try:
                        await self._engine.recommend(student_id)
                    except MarketplaceError as exc:
                        logger.warning("Skipping refresh for %s: %s", student_id, exc.kind)
                        continue
                    except Exception:
                        logger.exception("Failed to refresh recommendations for %s", student_id)
                        continue
                    self.refreshed += 1
        except asyncio.CancelledError:
            pass
        finally:
            logger.info("Recommendation refresher stopped")

    async def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
