"""Job scheduler using APScheduler with async support."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.core.config import settings
from app.core.logging import get_logger

from .registry import get_all_jobs, get_job

logger = get_logger("jobs.scheduler")

# Global scheduler instance
_scheduler: Optional["JobScheduler"] = None


class JobScheduler:
    """Runs the registered refresh jobs on fixed intervals."""

    def __init__(self):
        self._scheduler = AsyncIOScheduler(
            timezone=settings.scheduler_timezone,
            job_defaults={
                "coalesce": True,  # Combine missed runs into one
                "max_instances": 1,  # Only one instance per job at a time
                "misfire_grace_time": 60,
            },
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Schedule every registered job and start the scheduler."""
        if self._running:
            logger.warning("Scheduler already running")
            return

        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled via SCHEDULER_ENABLED=false")
            return

        self._load_jobs()
        self._scheduler.start()
        self._running = True
        logger.info("Job scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if not self._running:
            return

        self._scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Job scheduler stopped")

    def _load_jobs(self) -> None:
        for name, (func, interval) in get_all_jobs().items():
            seconds = int(interval())
            self._scheduler.add_job(
                self._wrap_job(name, func),
                trigger=IntervalTrigger(seconds=seconds),
                id=name,
                name=name,
                replace_existing=True,
            )
            logger.info(f"Scheduled job: {name} (every {seconds}s)")

    def _wrap_job(self, name: str, func: Callable) -> Callable:
        """Wrap job function with logging."""

        async def wrapper():
            await self._execute_job(name, func)

        return wrapper

    async def _execute_job(self, name: str, func: Callable) -> Any:
        """Execute a job, logging duration; failures are logged, never raised."""
        logger.info(f"Job {name} started")
        start_time = datetime.now(timezone.utc)

        try:
            if asyncio.iscoroutinefunction(func):
                result = await func()
            else:
                result = func()
        except Exception:
            duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
            logger.exception(f"Job {name} failed after {duration_ms}ms")
            return None

        duration_ms = int((datetime.now(timezone.utc) - start_time).total_seconds() * 1000)
        logger.info(f"Job {name} completed in {duration_ms}ms: {result}")
        return result

    async def run_job_now(self, name: str) -> Any:
        """Manually trigger a job execution."""
        job_func = get_job(name)
        if job_func is None:
            raise ValueError(f"Unknown job: {name}")
        return await self._execute_job(name, job_func)


def get_scheduler() -> Optional[JobScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> JobScheduler:
    """Start the global scheduler."""
    global _scheduler
    # Importing registers the refresh jobs
    from . import refresh  # noqa: F401

    if _scheduler is None:
        _scheduler = JobScheduler()
    await _scheduler.start()
    return _scheduler


async def stop_scheduler() -> None:
    """Stop the global scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
