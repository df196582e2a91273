"""
Background Review Workers

Recomputes the permission review queue on a schedule, independent of the
request path, and reports how many users sit in each priority tier.

The worker only reads and logs; review actions stay with a human reviewer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from steward.api.config import settings
from steward.api.access.review import ReviewPriority, ReviewScheduler, summarize_queue

logger = logging.getLogger(__name__)


@dataclass
class WorkerStats:
    """Statistics for a background worker."""
    name: str
    started_at: datetime
    last_run_at: Optional[datetime] = None
    run_count: int = 0
    error_count: int = 0
    last_error: Optional[str] = None
    last_summary: Dict[str, int] = field(default_factory=dict)
    last_duration_ms: int = 0


class ReviewQueueWorker:
    """
    Periodically scores every user awaiting review.

    Logs a warning whenever the queue holds critical-priority users.
    """

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        interval_seconds: Optional[int] = None,
    ):
        self.interval = interval_seconds or settings.REVIEW_QUEUE_INTERVAL_SEC
        self._session_maker = session_maker
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stats = WorkerStats(
            name="review_queue",
            started_at=datetime.now(timezone.utc),
        )

    def _get_session_maker(self) -> async_sessionmaker:
        if self._session_maker is not None:
            return self._session_maker
        from steward.api.db.session import get_session_maker
        return get_session_maker()

    async def start(self) -> None:
        """Start the review queue worker."""
        if self._running:
            return

        self._running = True
        self._stats.started_at = datetime.now(timezone.utc)
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Review queue worker started")

    async def stop(self) -> None:
        """Stop the review queue worker."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Review queue worker stopped")

    async def _run_loop(self) -> None:
        """Main worker loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Review queue refresh error: {e}")
                self._stats.error_count += 1
                self._stats.last_error = str(e)

    async def run_once(self) -> Dict[str, int]:
        """Score the users needing review and record the tier breakdown."""
        start = time.monotonic()

        session_maker = self._get_session_maker()
        async with session_maker() as session:
            scheduler = ReviewScheduler(session)
            candidates = await scheduler.get_review_candidates(needs_review_only=True)

        summary = summarize_queue(candidates)
        critical = summary.get(ReviewPriority.CRITICAL.value, 0)
        if critical:
            logger.warning(f"{critical} users need a critical-priority permission review")
        else:
            logger.info(f"Review queue refreshed: {summary}")

        self._stats.run_count += 1
        self._stats.last_run_at = datetime.now(timezone.utc)
        self._stats.last_summary = summary
        self._stats.last_duration_ms = int((time.monotonic() - start) * 1000)
        return summary

    def get_stats(self) -> WorkerStats:
        """Get worker statistics."""
        return self._stats


class BackgroundWorkerManager:
    """Manages all background workers."""

    def __init__(self):
        self.review_queue = ReviewQueueWorker()
        self._started = False

    async def start_all(self) -> None:
        """Start all background workers."""
        if self._started:
            return

        await self.review_queue.start()

        self._started = True
        logger.info("All background workers started")

    async def stop_all(self) -> None:
        """Stop all background workers."""
        await self.review_queue.stop()

        self._started = False
        logger.info("All background workers stopped")

    def get_all_stats(self) -> Dict[str, WorkerStats]:
        """Get statistics for all workers."""
        return {
            "review_queue": self.review_queue.get_stats(),
        }


# Global worker manager
_worker_manager: Optional[BackgroundWorkerManager] = None


def get_worker_manager() -> BackgroundWorkerManager:
    """Get the global worker manager."""
    global _worker_manager
    if _worker_manager is None:
        _worker_manager = BackgroundWorkerManager()
    return _worker_manager


async def init_background_workers() -> None:
    """Initialize and start background workers when enabled."""
    if not settings.REVIEW_WORKER_ENABLED:
        logger.info("Review queue worker disabled")
        return
    manager = get_worker_manager()
    await manager.start_all()


async def close_background_workers() -> None:
    """Stop all background workers."""
    global _worker_manager
    if _worker_manager:
        await _worker_manager.stop_all()
        _worker_manager = None
