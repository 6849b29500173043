"""APScheduler integration for FastAPI.

Runs the settlement pass on a fixed interval.
"""

import asyncio
import concurrent.futures
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from settler.config import settings

logger = logging.getLogger(__name__)

SETTLEMENT_JOB_ID = "settlement_pass"

scheduler = AsyncIOScheduler()
_loop: asyncio.AbstractEventLoop | None = None


def add_settlement_job(interval_minutes: float):
    """Add or replace the settlement pass job."""
    from settler.engine.settlement_job import run_settlement_pass

    scheduler.add_job(
        run_settlement_pass,
        trigger=IntervalTrigger(minutes=interval_minutes),
        id=SETTLEMENT_JOB_ID,
        name="Settlement pass",
        replace_existing=True,
        # Overlapping passes are skipped; claiming keeps them safe regardless
        max_instances=1,
        coalesce=True,
        misfire_grace_time=60,
    )
    logger.info(f"Scheduled settlement pass every {interval_minutes}m")


def start_scheduler():
    """Start the scheduler on the running event loop."""
    global _loop
    _loop = asyncio.get_running_loop()
    add_settlement_job(settings.scheduler_interval_minutes)
    scheduler.start()
    logger.info(f"Scheduler started with {len(scheduler.get_jobs())} jobs")


def stop_scheduler():
    """Shut down the scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
    logger.info("Scheduler stopped")


def submit_pass() -> concurrent.futures.Future:
    """Run one settlement pass on the service loop from any thread."""
    from settler.engine.settlement_job import run_settlement_pass

    if _loop is None or not _loop.is_running():
        raise RuntimeError("Scheduler loop is not running")
    return asyncio.run_coroutine_threadsafe(run_settlement_pass(), _loop)


def get_scheduler_status() -> dict:
    """Return current scheduler state for the API."""
    from settler.engine.settlement_job import get_last_pass

    jobs = scheduler.get_jobs()
    return {
        "running": scheduler.running,
        "job_count": len(jobs),
        "interval_minutes": settings.scheduler_interval_minutes,
        "jobs": [
            {
                "id": j.id,
                "name": j.name,
                "next_run": str(j.next_run_time) if j.next_run_time else None,
                "trigger": str(j.trigger),
            }
            for j in jobs
        ],
        "last_pass": get_last_pass(),
    }
