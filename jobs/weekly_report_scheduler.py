"""
Weekly report scheduler.

Every Saturday at 00:00 UTC (and once at startup) one background-queue job is
submitted per active user. Each job decides on its own whether a report is due.
"""

import logging
from datetime import datetime
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from crud.user import UserRepository
from database import AsyncSessionLocal
from jobs.background_queue import BackgroundQueue, background_queue
from services.weekly_report_service import WeeklyReportService

logger = logging.getLogger(__name__)

JOB_ID = "weekly_reports"


def _report_job(user_id: int, session_factory: async_sessionmaker, now: Optional[datetime]):
    async def job() -> None:
        try:
            async with session_factory() as db:
                user = await UserRepository(db).get_user_by_id(user_id)
                if user is None:
                    return
                await WeeklyReportService(db).generate_for_user(user, now)
        except Exception as e:
            logger.warning(f"Failed to generate scheduled weekly report for user {user_id}: {e}")

    return job


async def run_weekly_reports_once(
    queue: BackgroundQueue = background_queue,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> int:
    """
    Queue one report job per active user.

    Returns:
        Number of jobs submitted (0 if the user list could not be loaded)
    """
    logger.info("Running weekly report scheduler")
    try:
        async with session_factory() as db:
            user_ids = [user.id for user in await UserRepository(db).list_users()]
    except Exception as e:
        logger.error(f"Weekly report scheduler failed: {e}", exc_info=True)
        return 0

    for user_id in user_ids:
        queue.submit(_report_job(user_id, session_factory, now))
    return len(user_ids)


def start_weekly_reports(scheduler: BaseScheduler) -> Job:
    """Run once now, then every Saturday at midnight."""
    logger.info("Weekly reports scheduled for Saturdays at 00:00")
    return scheduler.add_job(
        run_weekly_reports_once,
        CronTrigger(day_of_week="sat", hour=0, minute=0),
        id=JOB_ID,
        name="Weekly reports",
        next_run_time=datetime.now(scheduler.timezone),
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
