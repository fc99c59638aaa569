"""
Personalization analysis job.

Periodically re-derives patterns for users with recent chat activity and
folds them into their personalization profiles.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from config.settings import settings
from crud.personalization import PersonalizationRepository
from crud.tracking import ChatSessionRepository
from database import AsyncSessionLocal
from database_models import utcnow
from services.pattern_analysis import PatternAnalysisService

logger = logging.getLogger(__name__)

JOB_ID = "personalization_analysis"
ACTIVE_USER_WINDOW = timedelta(days=30)
BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 1.0


async def analyze_user_personalization(
    user_id: int,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> bool:
    """
    Analyze one user and update their profile when anything confident was found.
    Errors are logged, never raised.

    Returns:
        True if the profile was updated
    """
    now = now or utcnow()
    try:
        async with session_factory() as db:
            profile = await PersonalizationRepository(db).get_by_user(user_id)
            if profile is not None and profile.last_analysis:
                days_since = (now - profile.last_analysis).total_seconds() / 86400
                if days_since < settings.min_days_since_analysis:
                    logger.debug(f"Skipping analysis for user {user_id} - analyzed {days_since:.1f} days ago")
                    return False

            service = PatternAnalysisService(db)
            window = settings.personalization_analysis_interval_days
            patterns = await service.analyze_patterns(user_id, window, now)
            time_analysis = await service.analyze_time_patterns(user_id, window, now)

            if not patterns and not time_analysis.preferred_hours:
                logger.debug(f"No confident patterns found for user {user_id}, skipping update")
                return False

            await service.update_profile(user_id, patterns, time_analysis, now)
            return True
    except Exception as e:
        logger.error(f"Error analyzing personalization for user {user_id}: {e}", exc_info=True)
        return False


async def run_personalization_analysis_for_all_users(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: Optional[datetime] = None,
    batch_pause: float = BATCH_PAUSE_SECONDS,
) -> int:
    """
    Analyze every user with a chat session in the last 30 days,
    ten at a time with a short pause between batches.

    Returns:
        Number of profiles updated
    """
    now = now or utcnow()
    logger.info("Starting personalization analysis job for all users...")
    try:
        async with session_factory() as db:
            user_ids = await ChatSessionRepository(db).list_active_user_ids(now - ACTIVE_USER_WINDOW)
    except Exception as e:
        logger.error(f"Error in personalization analysis job: {e}", exc_info=True)
        return 0

    logger.info(f"Found {len(user_ids)} active users to analyze")
    updated = 0
    for start in range(0, len(user_ids), BATCH_SIZE):
        batch = user_ids[start:start + BATCH_SIZE]
        results = await asyncio.gather(
            *(analyze_user_personalization(user_id, session_factory, now) for user_id in batch)
        )
        updated += sum(1 for r in results if r)
        if start + BATCH_SIZE < len(user_ids):
            await asyncio.sleep(batch_pause)

    logger.info(f"Personalization analysis job completed: {updated}/{len(user_ids)} profiles updated")
    return updated


def start_personalization_analysis(scheduler: BaseScheduler, interval_hours: Optional[int] = None) -> Job:
    """Run every PERSONALIZATION_JOB_INTERVAL_HOURS; immediately as well when configured."""
    interval_hours = interval_hours or settings.personalization_job_interval_hours
    logger.info(f"Personalization analysis scheduled every {interval_hours} hours")
    options = {}
    if settings.personalization_job_run_on_startup:
        options["next_run_time"] = datetime.now(scheduler.timezone)
    return scheduler.add_job(
        run_personalization_analysis_for_all_users,
        IntervalTrigger(hours=interval_hours),
        id=JOB_ID,
        name="Personalization analysis",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        **options,
    )
