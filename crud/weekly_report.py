"""
WeeklyReportRepository for database operations on WeeklyReport model
"""

from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from database_models import WeeklyReport


class WeeklyReportRepository:

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_latest_since(self, user_id: int, since: datetime) -> Optional[WeeklyReport]:
        result = await self.db.execute(
            select(WeeklyReport)
            .where(WeeklyReport.user_id == user_id, WeeklyReport.created_at >= since)
            .order_by(WeeklyReport.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: int, limit: int = 10) -> List[WeeklyReport]:
        result = await self.db.execute(
            select(WeeklyReport)
            .where(WeeklyReport.user_id == user_id)
            .order_by(WeeklyReport.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def create(self, user_id: int, content: str, metadata: dict,
                     created_at: Optional[datetime] = None) -> WeeklyReport:
        report = WeeklyReport(user_id=user_id, content=content, report_metadata=metadata)
        if created_at:
            report.created_at = created_at
        self.db.add(report)
        await self.db.commit()
        return report
