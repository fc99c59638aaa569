"""
NotificationRepository for in-app notifications
"""

from typing import List
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from database_models import Notification


class NotificationRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, user_id: int, type: str, message: str) -> Notification:
        notification = Notification(user_id=user_id, type=type, message=message)
        self.db.add(notification)
        await self.db.flush()
        return notification

    async def list_for_user(self, user_id: int, limit: int = 50) -> List[Notification]:
        result = await self.db.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
