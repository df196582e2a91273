"""Shared services for STEWARD API."""

from steward.api.services.background_tasks import (
    ReviewQueueWorker,
    WorkerStats,
    get_worker_manager,
    init_background_workers,
    close_background_workers,
)

__all__ = [
    "ReviewQueueWorker",
    "WorkerStats",
    "get_worker_manager",
    "init_background_workers",
    "close_background_workers",
]
