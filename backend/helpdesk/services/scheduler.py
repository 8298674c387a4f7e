"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for the escalation sweep.

WHY: Time-based escalation conditions (SLA breach, time in status, no
response) turn true without any request arriving, so a periodic job has
to evaluate them.

HOW: AsyncIOScheduler with an in-memory job store. max_instances=1 and
coalesce keep at most one sweep running per process; the execution
ledger keeps sweeps in different processes from duplicating actions.

Example:
    # In main.py startup:
    from helpdesk.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.interval import IntervalTrigger

from helpdesk.core.config import settings
from helpdesk.services.escalation_sweep import get_sweep_service


logger = logging.getLogger(__name__)

ESCALATION_SWEEP_JOB_ID = "escalation_sweep"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    Note: Call this from FastAPI startup event.
    """
    global _scheduler

    if _scheduler is not None and _scheduler.running:
        logger.warning("Scheduler already running")
        return

    _scheduler = AsyncIOScheduler(
        jobstores={"default": MemoryJobStore()},
        executors={"default": AsyncIOExecutor()},
        job_defaults={
            "coalesce": True,  # Combine multiple missed runs into one
            "max_instances": 1,  # Only one sweep at a time
            "misfire_grace_time": 60,
        },
        timezone="UTC",
    )

    _register_escalation_sweep_job()

    _scheduler.start()
    logger.info(
        f"Scheduler started with escalation sweep every "
        f"{settings.ESCALATION_SWEEP_INTERVAL_SECONDS} seconds"
    )


def _register_escalation_sweep_job() -> None:
    """Schedule the periodic escalation sweep."""
    if _scheduler is None:
        logger.error("Cannot register job: scheduler not initialized")
        return

    _scheduler.add_job(
        func=get_sweep_service().run_sweep,
        trigger=IntervalTrigger(seconds=settings.ESCALATION_SWEEP_INTERVAL_SECONDS),
        id=ESCALATION_SWEEP_JOB_ID,
        name="Escalation Sweep",
        replace_existing=True,
    )
    logger.info(
        f"Registered escalation sweep job (interval: {settings.ESCALATION_SWEEP_INTERVAL_SECONDS}s)"
    )


async def shutdown_scheduler() -> None:
    """
    Shut down the background job scheduler.

    Note: Call this from FastAPI shutdown event.
    """
    global _scheduler

    if _scheduler is None:
        logger.info("Scheduler not running")
        return

    if not _scheduler.running:
        logger.info("Scheduler already stopped")
        _scheduler = None
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


async def run_escalation_sweep_now() -> dict:
    """
    Run an escalation sweep immediately, outside the schedule.

    Returns:
        Sweep stats
    """
    return await get_sweep_service().run_sweep()


def get_scheduler_status() -> dict:
    """
    Get scheduler status information for health checks.

    Returns:
        Dict with scheduler status and job details
    """
    if _scheduler is None:
        return {
            "running": False,
            "jobs": [],
            "message": "Scheduler not initialized",
        }

    jobs = [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": str(job.next_run_time) if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in _scheduler.get_jobs()
    ]

    return {
        "running": _scheduler.running,
        "jobs": jobs,
        "message": "Scheduler is running" if _scheduler.running else "Scheduler is paused",
    }
