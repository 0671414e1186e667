"""
APScheduler setup for the periodic poll job.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll_messages"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


def get_scheduler(timezone: str = "UTC") -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        scheduler = AsyncIOScheduler(
            timezone=timezone,
            job_defaults={
                # Ticks that fire while a cycle runs are dropped, not queued
                "max_instances": 1,
                "coalesce": True,
                "misfire_grace_time": None,
            },
        )

    return scheduler


async def start_scheduler() -> None:
    """Start the scheduler."""
    sched = get_scheduler()
    if not sched.running:
        sched.start()
        logger.info("Scheduler started")


async def stop_scheduler() -> None:
    """
    Stop the scheduler so no new ticks fire.

    The in-flight poll cycle is not cancelled; callers wait for it via
    PollService.wait_until_idle().
    """
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def schedule_polling(poll_service, interval_seconds: float) -> None:
    """
    Schedule the poll cycle at a fixed interval.

    Args:
        poll_service: PollService instance whose poll() runs on each tick
        interval_seconds: Seconds between ticks
    """
    sched = get_scheduler()

    try:
        sched.add_job(
            poll_service.poll,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=POLL_JOB_ID,
            name="Poll dashboard for OTPs",
            replace_existing=True,
            next_run_time=datetime.now(sched.timezone),
        )
        logger.info(f"Scheduled {POLL_JOB_ID} every {interval_seconds}s")
    except Exception as e:
        logger.exception(f"Failed to schedule polling: {e}")
        raise
