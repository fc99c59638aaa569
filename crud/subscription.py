"""
SubscriptionRepository for database operations on Subscription model
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from database_models import Subscription

STATUS_PENDING = "pending"
STATUS_TRIALING = "trialing"
STATUS_ACTIVE = "active"
STATUS_CANCELLED = "cancelled"
STATUS_EXPIRED = "expired"

# Statuses that still grant (or will grant) premium access
LIVE_STATUSES = (STATUS_TRIALING, STATUS_ACTIVE)


class SubscriptionRepository:
    """
    Repository class for Subscription database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_by_stripe_session(self, stripe_session_id: str) -> Optional[Subscription]:
        result = await self.db.execute(
            select(Subscription).where(Subscription.stripe_session_id == stripe_session_id)
        )
        return result.scalar_one_or_none()

    async def get_current_for_user(self, user_id: int) -> Optional[Subscription]:
        """
        Most recent trialing or active subscription for a user.

        Args:
            user_id: Owning user's ID

        Returns:
            Subscription or None when the user has no live subscription
        """
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id, Subscription.status.in_(LIVE_STATUSES))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int) -> List[Subscription]:
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return list(result.scalars().all())

    async def has_had_trial(self, user_id: int) -> bool:
        result = await self.db.execute(
            select(Subscription.id)
            .where(Subscription.user_id == user_id, Subscription.trial_starts_at.is_not(None))
            .limit(1)
        )
        return result.first() is not None

    async def find_due_trials(self, now: datetime, limit: int) -> List[Subscription]:
        """Trialing subscriptions whose trial has ended at or before ``now``."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.status == STATUS_TRIALING, Subscription.trial_ends_at <= now)
            .order_by(Subscription.trial_ends_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_trials_ending_between(
        self,
        start: datetime,
        end: datetime,
        limit: int,
    ) -> List[Subscription]:
        """Trialing subscriptions ending in (start, end] that have not been reminded yet."""
        result = await self.db.execute(
            select(Subscription)
            .where(
                Subscription.status == STATUS_TRIALING,
                Subscription.trial_ends_at > start,
                Subscription.trial_ends_at <= end,
                Subscription.trial_reminder_sent_at.is_(None),
            )
            .order_by(Subscription.trial_ends_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def find_lapsed(self, now: datetime, limit: int) -> List[Subscription]:
        """Active subscriptions whose paid period ended at or before ``now``."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.status == STATUS_ACTIVE, Subscription.expires_at <= now)
            .order_by(Subscription.expires_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def create(self, data: dict) -> Subscription:
        subscription = Subscription(**data)
        self.db.add(subscription)
        await self.db.flush()
        await self.db.refresh(subscription)
        return subscription

    async def save(self, subscription: Subscription) -> Subscription:
        """Persist pending changes on ``subscription`` and commit."""
        self.db.add(subscription)
        await self.db.commit()
        return subscription
