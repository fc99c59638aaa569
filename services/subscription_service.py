"""
Subscription Service - plan durations, trial start, cancellation, paid activation
and the user-mirror shapes shared with the maintenance job.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings, PLAN_MONTHLY, PLAN_ANNUALLY, PLAN_TRIAL, TIER_FREE, TIER_PREMIUM
from crud.subscription import (
    SubscriptionRepository,
    STATUS_TRIALING,
    STATUS_CANCELLED,
    STATUS_ACTIVE,
    STATUS_EXPIRED,
)
from crud.user import UserRepository
from database_models import Subscription, User, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PLAN_DAYS = 30

PLAN_NAMES = {
    PLAN_MONTHLY: "Premium Monthly",
    PLAN_ANNUALLY: "Premium Annual",
    PLAN_TRIAL: "Premium Trial",
}


def plan_duration(plan_id: Optional[str], trial_days: Optional[int] = None) -> timedelta:
    """
    Length of one billing period for a plan.

    monthly → 30 days, annually → 365 days, trial → ``trial_days``
    (PREMIUM_TRIAL_DAYS, default 7); anything else falls back to 30 days.
    """
    if trial_days is None:
        trial_days = settings.premium_trial_days
    days = {
        PLAN_MONTHLY: 30,
        PLAN_ANNUALLY: 365,
        PLAN_TRIAL: trial_days,
    }.get(plan_id or "", DEFAULT_PLAN_DAYS)
    return timedelta(days=days)


def compute_expiry(plan_id: Optional[str], start: datetime, trial_days: Optional[int] = None) -> datetime:
    return start + plan_duration(plan_id, trial_days)


def is_cancelled(subscription: Subscription) -> bool:
    """True when the subscriber opted out (explicitly or by turning off auto-renew)."""
    return (
        subscription.auto_renew is False
        or subscription.status == STATUS_CANCELLED
        or subscription.cancelled_at is not None
    )


def premium_mirror(subscription: Subscription, activated_at: datetime) -> dict:
    """User columns for an active, paid subscription."""
    return {
        "subscription_is_active": True,
        "subscription_tier": TIER_PREMIUM,
        "subscription_id": subscription.id,
        "subscription_plan_id": subscription.plan_id,
        "subscription_activated_at": activated_at,
        "subscription_expires_at": subscription.expires_at,
        "trial_used": True,
    }


def free_mirror(expires_at: datetime) -> dict:
    """User columns once a subscription has ended."""
    return {
        "subscription_is_active": False,
        "subscription_tier": TIER_FREE,
        "subscription_expires_at": expires_at,
    }


class SubscriptionError(ValueError):
    """Raised when a requested lifecycle change is not allowed."""


class SubscriptionService:
    """
    Service for user-initiated subscription changes.
    The scheduled transitions live in jobs.subscription_maintenance.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.subscriptions = SubscriptionRepository(db)
        self.users = UserRepository(db)

    async def get_status(self, user: User) -> dict:
        """Summarize the user's current subscription and mirror."""
        current = await self.subscriptions.get_current_for_user(user.id)
        return {
            "tier": user.subscription_tier,
            "is_active": user.subscription_is_active,
            "expires_at": _iso(user.subscription_expires_at),
            "trial_used": user.trial_used,
            "trial_ends_at": _iso(user.trial_ends_at),
            "subscription": serialize_subscription(current) if current else None,
        }

    async def start_trial(self, user: User, plan_id: str = PLAN_MONTHLY, now: Optional[datetime] = None) -> Subscription:
        """
        Start the one-per-user premium trial. When the trial ends without a
        cancellation the maintenance job converts it to ``plan_id``.
        """
        now = now or utcnow()
        if plan_id not in (PLAN_MONTHLY, PLAN_ANNUALLY):
            raise SubscriptionError(f"Unknown plan: {plan_id}")
        if user.trial_used or await self.subscriptions.has_had_trial(user.id):
            raise SubscriptionError("Trial already used")
        if await self.subscriptions.get_current_for_user(user.id):
            raise SubscriptionError("Subscription already active")

        trial_ends_at = compute_expiry(PLAN_TRIAL, now)
        subscription = await self.subscriptions.create({
            "user_id": user.id,
            "plan_id": plan_id,
            "plan_name": PLAN_NAMES[plan_id],
            "status": STATUS_TRIALING,
            "trial_starts_at": now,
            "trial_ends_at": trial_ends_at,
            "expires_at": trial_ends_at,
            "auto_renew": True,
        })
        await self.users.update_user(user, {
            "subscription_is_active": True,
            "subscription_tier": TIER_PREMIUM,
            "subscription_id": subscription.id,
            "subscription_plan_id": plan_id,
            "subscription_expires_at": trial_ends_at,
            "trial_started_at": now,
            "trial_ends_at": trial_ends_at,
        })
        logger.info(f"Started trial for user {user.id} (ends {trial_ends_at.isoformat()})")
        return subscription

    async def cancel(self, user: User, now: Optional[datetime] = None) -> Subscription:
        """
        Turn off renewal. Access continues until the current period (or trial)
        ends; the maintenance job then expires the subscription.
        """
        now = now or utcnow()
        subscription = await self.subscriptions.get_current_for_user(user.id)
        if not subscription:
            raise SubscriptionError("No active subscription")

        subscription.auto_renew = False
        subscription.cancelled_at = now
        await self.db.flush()
        logger.info(f"User {user.id} cancelled subscription {subscription.id}")
        return subscription

    async def activate_paid(
        self,
        user_id: int,
        plan_id: str,
        stripe_session_id: Optional[str] = None,
        amount: float = 0.0,
        currency: str = "USD",
        now: Optional[datetime] = None,
    ) -> Subscription:
        """
        Record a completed payment: a new active subscription for one billing
        period, mirrored onto the user. Replays of the same Stripe session are
        returned unchanged.
        """
        now = now or utcnow()
        if stripe_session_id:
            existing = await self.subscriptions.get_by_stripe_session(stripe_session_id)
            if existing:
                return existing

        # A new paid period supersedes any trial or earlier period still on file
        superseded = await self.subscriptions.get_current_for_user(user_id)
        if superseded:
            superseded.status = STATUS_EXPIRED
            superseded.auto_renew = False
            superseded.expires_at = now

        subscription = await self.subscriptions.create({
            "user_id": user_id,
            "plan_id": plan_id,
            "plan_name": PLAN_NAMES.get(plan_id, plan_id),
            "amount": amount,
            "currency": currency,
            "status": STATUS_ACTIVE,
            "start_date": now,
            "activated_at": now,
            "expires_at": compute_expiry(plan_id, now),
            "auto_renew": True,
            "stripe_session_id": stripe_session_id,
        })
        await self.db.commit()
        await self.users.update_subscription_mirror(
            user_id,
            premium_mirror(subscription, now),
            clear_trial_markers=True,
        )
        logger.info(f"Activated {plan_id} subscription {subscription.id} for user {user_id}")
        return subscription


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_subscription(subscription: Subscription) -> dict:
    return {
        "id": subscription.id,
        "plan_id": subscription.plan_id,
        "plan_name": subscription.plan_name,
        "status": subscription.status,
        "auto_renew": subscription.auto_renew,
        "trial_ends_at": _iso(subscription.trial_ends_at),
        "activated_at": _iso(subscription.activated_at),
        "expires_at": _iso(subscription.expires_at),
        "cancelled_at": _iso(subscription.cancelled_at),
    }
