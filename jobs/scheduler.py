"""
Scheduler:
  - subscription_maintenance: trial/expiry sweep, every SUBSCRIPTION_CRON_MINUTES (default 30)
  - weekly_reports: queue weekly reports, at startup and Saturdays 00:00 UTC
  - personalization_analysis: refresh profiles, every PERSONALIZATION_JOB_INTERVAL_HOURS (default 24)

Jobs run on the application's event loop. Disabled with ENABLE_SCHEDULER=false.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from jobs.personalization_analysis_job import start_personalization_analysis
from jobs.subscription_maintenance import subscription_maintenance_job
from jobs.weekly_report_scheduler import start_weekly_reports

logger = logging.getLogger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


def start_scheduler() -> AsyncIOScheduler:
    """Create the scheduler, register every recurring job and start it. Must run inside the event loop."""
    global _scheduler
    if _scheduler is not None:
        logger.info("Scheduler already running.")
        return _scheduler

    _scheduler = AsyncIOScheduler(timezone="UTC")
    subscription_maintenance_job.start_recurring(_scheduler)
    start_weekly_reports(_scheduler)
    start_personalization_analysis(_scheduler)

    _scheduler.start()
    logger.info(f"Scheduler started with jobs: {', '.join(job.id for job in _scheduler.get_jobs())}")
    return _scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Scheduler stopped.")


def get_scheduler_status() -> dict:
    status = {"running": False, "jobs": []}
    if _scheduler is None:
        return status
    status["running"] = True
    for job in _scheduler.get_jobs():
        status["jobs"].append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
        })
    return status
