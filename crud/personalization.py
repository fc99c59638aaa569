"""
PersonalizationRepository for database operations on Personalization model
"""

from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from database_models import Personalization


class PersonalizationRepository:
    """
    Repository class for Personalization database operations.
    One profile per user.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_user(self, user_id: int) -> Optional[Personalization]:
        result = await self.db.execute(
            select(Personalization).where(Personalization.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def create(self, profile: Personalization) -> Personalization:
        self.db.add(profile)
        await self.db.flush()
        await self.db.refresh(profile)
        return profile

    async def save(self, profile: Personalization) -> Personalization:
        """Persist pending changes on ``profile`` and commit."""
        self.db.add(profile)
        await self.db.commit()
        return profile
