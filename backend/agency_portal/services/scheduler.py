"""
Background Job Scheduler.

WHAT: Configures and manages APScheduler for background tasks.

WHY: Proposals expire on a clock, not on a request. The daily sweep
expires overdue proposals (voiding their invoices) and sends expiry
reminders without anyone opening the portal.

HOW: Uses APScheduler's AsyncIOScheduler with an in-memory job store and a
cron trigger at PROPOSAL_EXPIRY_CRON_HOUR (UTC).

Example:
    # In main.py startup:
    from agency_portal.services.scheduler import start_scheduler, shutdown_scheduler

    @app.on_event("startup")
    async def startup():
        await start_scheduler()

    @app.on_event("shutdown")
    async def shutdown():
        await shutdown_scheduler()
"""

import logging
from typing import Optional

from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from agency_portal.core.config import settings
from agency_portal.services.proposal_expiry_service import get_expiry_service


logger = logging.getLogger(__name__)

EXPIRY_JOB_ID = "proposal_expiry_sweep"

# Global scheduler instance
_scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler() -> Optional[AsyncIOScheduler]:
    """Get the global scheduler instance."""
    return _scheduler


async def start_scheduler() -> None:
    """
    Start the background job scheduler.

    HOW:
    1. Creates AsyncIOScheduler with memory job store
    2. Registers the daily proposal expiry job
    3. Starts the scheduler

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
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
            "misfire_grace_time": 3600,
        },
        timezone="UTC",
    )

    _register_expiry_job()

    _scheduler.start()
    logger.info(
        f"Scheduler started with proposal expiry sweep daily at "
        f"{settings.PROPOSAL_EXPIRY_CRON_HOUR:02d}:00 UTC"
    )


def _register_expiry_job() -> None:
    """Register the daily expiry sweep (expire overdue, then remind)."""
    if _scheduler is None:
        logger.error("Cannot register job: scheduler not initialized")
        return

    _scheduler.add_job(
        func=get_expiry_service().run_daily_sweep,
        trigger=CronTrigger(hour=settings.PROPOSAL_EXPIRY_CRON_HOUR, minute=0),
        id=EXPIRY_JOB_ID,
        name="Proposal Expiry Sweep",
        replace_existing=True,
    )
    logger.info("Registered proposal expiry sweep job")


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
        return

    logger.info("Shutting down scheduler...")
    _scheduler.shutdown(wait=True)
    _scheduler = None
    logger.info("Scheduler shut down successfully")


async def run_expiry_sweep_now() -> dict:
    """
    Run the expiry sweep immediately.

    WHY: Admin-triggered sweeps and manual testing.
    """
    return await get_expiry_service().expire_overdue_proposals()


def get_scheduler_status() -> dict:
    """
    Get scheduler status information.

    WHY: Exposed on /health for monitoring.
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
