"""
Subscription maintenance job.

Each pass:
  1. reminds trials ending within 48 hours (once per trial),
  2. resolves trials that have ended: cancelled ones expire, the rest become
     paid subscriptions for one plan period,
  3. expires active subscriptions whose paid period has lapsed,
  4. repairs user mirrors left behind by an interrupted earlier pass.

Every subscription is saved before its owner's mirror is written. The two
writes are separate commits, so the mirror is eventually consistent with the
subscription table: a crash between them is repaired by step 4 of the next pass.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.job import Job
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from crud.notification import NotificationRepository
from crud.subscription import SubscriptionRepository, STATUS_ACTIVE, STATUS_EXPIRED
from crud.user import UserRepository
from database import AsyncSessionLocal
from database_models import utcnow
from services.subscription_service import compute_expiry, is_cancelled, premium_mirror, free_mirror

logger = logging.getLogger(__name__)

BATCH_SIZE = 200
TRIAL_REMINDER_WINDOW = timedelta(hours=48)
JOB_ID = "subscription_maintenance"


@dataclass
class MaintenanceResult:
    reminded: int = 0
    activated: int = 0
    expired_trials: int = 0
    expired_lapsed: int = 0
    reconciled: int = 0
    failed: bool = False


class SubscriptionMaintenanceJob:
    """Scheduled sweep that moves subscriptions through trial → active/expired → expired."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        trial_days: Optional[int] = None,
        batch_size: int = BATCH_SIZE,
    ):
        self.session_factory = session_factory
        self.trial_days = settings.premium_trial_days if trial_days is None else trial_days
        self.batch_size = batch_size

    async def run_once(self, now: Optional[datetime] = None) -> MaintenanceResult:
        """
        Run one maintenance pass. Never raises: a failure ends the pass and is logged.

        Args:
            now: Reference time (naive UTC); defaults to the current time

        Returns:
            Counts of what this pass changed
        """
        now = now or utcnow()
        result = MaintenanceResult()
        try:
            async with self.session_factory() as db:
                # Reminders are best-effort; transitions still run when they fail
                try:
                    await self.remind_trials_ending_soon(db, now, result)
                except Exception as e:
                    await db.rollback()
                    logger.warning(f"Trial reminders skipped this pass: {e}", exc_info=True)
                await self.process_trial_transitions(db, now, result)
                await self.expire_lapsed_subscriptions(db, now, result)
                await self.reconcile_mirrors(db, now, result)
        except Exception as e:
            result.failed = True
            logger.warning(f"Subscription maintenance job failed: {e}", exc_info=True)
            return result

        if result.activated or result.expired_trials or result.expired_lapsed:
            logger.info(
                f"Subscription maintenance: {result.activated} activated, "
                f"{result.expired_trials} trials expired, {result.expired_lapsed} lapsed"
            )
        return result

    async def remind_trials_ending_soon(self, db: AsyncSession, now: datetime, result: MaintenanceResult) -> None:
        subscriptions = SubscriptionRepository(db)
        notifications = NotificationRepository(db)
        ending_soon = await subscriptions.find_trials_ending_between(
            now, now + TRIAL_REMINDER_WINDOW, self.batch_size
        )
        # A rollback expires loaded rows, so only plain ids are read after one
        pending = [(trial.id, trial.user_id) for trial in ending_soon]
        for subscription_id, user_id in pending:
            try:
                await notifications.create(
                    user_id,
                    "billing",
                    "Your trial ends soon. Upgrade to keep premium active.",
                )
                trial = await subscriptions.get_by_id(subscription_id)
                trial.trial_reminder_sent_at = now
                await db.commit()
                result.reminded += 1
            except Exception as e:
                await db.rollback()
                logger.warning(f"Failed to send trial-ending notification for subscription {subscription_id}: {e}")

    async def process_trial_transitions(self, db: AsyncSession, now: datetime, result: MaintenanceResult) -> None:
        subscriptions = SubscriptionRepository(db)
        users = UserRepository(db)

        for trial in await subscriptions.find_due_trials(now, self.batch_size):
            if is_cancelled(trial):
                trial.status = STATUS_EXPIRED
                trial.auto_renew = False
                trial.expires_at = trial.trial_ends_at or now
                await subscriptions.save(trial)

                await users.update_subscription_mirror(
                    trial.user_id,
                    free_mirror(trial.expires_at),
                    clear_trial_markers=True,
                )
                result.expired_trials += 1
                continue

            trial.status = STATUS_ACTIVE
            trial.activated_at = now
            trial.start_date = trial.start_date or trial.trial_starts_at or now
            trial.expires_at = compute_expiry(trial.plan_id, now, self.trial_days)
            await subscriptions.save(trial)

            await users.update_subscription_mirror(
                trial.user_id,
                premium_mirror(trial, now),
                clear_trial_markers=True,
            )
            result.activated += 1

    async def expire_lapsed_subscriptions(self, db: AsyncSession, now: datetime, result: MaintenanceResult) -> None:
        subscriptions = SubscriptionRepository(db)
        users = UserRepository(db)

        for subscription in await subscriptions.find_lapsed(now, self.batch_size):
            subscription.status = STATUS_EXPIRED
            subscription.auto_renew = False
            await subscriptions.save(subscription)

            await users.update_subscription_mirror(
                subscription.user_id,
                free_mirror(subscription.expires_at or now),
            )
            result.expired_lapsed += 1

    async def reconcile_mirrors(self, db: AsyncSession, now: datetime, result: MaintenanceResult) -> None:
        users = UserRepository(db)
        for user, subscription in await users.find_stale_mirrors(self.batch_size):
            user_id, subscription_id, status = user.id, subscription.id, subscription.status
            if status == STATUS_ACTIVE:
                mirror = premium_mirror(subscription, subscription.activated_at or now)
                clear_markers = True
            else:
                mirror = free_mirror(subscription.expires_at or now)
                clear_markers = False
            # Point the mirror at the latest subscription, not the one it last saw
            mirror["subscription_id"] = subscription_id
            await users.update_subscription_mirror(user_id, mirror, clear_trial_markers=clear_markers)
            logger.info(f"Reconciled subscription mirror for user {user_id} with subscription {subscription_id} ({status})")
            result.reconciled += 1

    def start_recurring(self, scheduler: BaseScheduler, interval_minutes: Optional[int] = None) -> Job:
        """
        Register the sweep on ``scheduler``: once immediately, then every
        ``interval_minutes`` (SUBSCRIPTION_CRON_MINUTES, default 30).
        """
        interval_minutes = interval_minutes or settings.subscription_cron_minutes
        logger.info(f"Subscription maintenance scheduled every {interval_minutes} minutes")
        return scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=interval_minutes),
            id=JOB_ID,
            name="Subscription maintenance",
            next_run_time=datetime.now(scheduler.timezone),
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )


subscription_maintenance_job = SubscriptionMaintenanceJob()
