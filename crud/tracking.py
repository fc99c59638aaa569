"""
Repositories for the interaction history the analysis jobs read:
chat sessions, journal entries and mood entries.
"""

import uuid
from datetime import datetime
from typing import List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from database_models import ChatSession, JournalEntry, MoodEntry, utcnow


class ChatSessionRepository:
    """
    Repository class for ChatSession database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_session_id(self, session_id: str, user_id: int) -> Optional[ChatSession]:
        result = await self.db.execute(
            select(ChatSession).where(ChatSession.session_id == session_id, ChatSession.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, user_id: int, since: datetime, limit: Optional[int] = None) -> List[ChatSession]:
        """
        Sessions started at or after ``since``, newest first.

        Args:
            user_id: Owning user's ID
            since: Window start (naive UTC)
            limit: Optional cap on the number of sessions

        Returns:
            List of ChatSession objects
        """
        query = (
            select(ChatSession)
            .where(ChatSession.user_id == user_id, ChatSession.start_time >= since)
            .order_by(ChatSession.start_time.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_active_user_ids(self, since: datetime) -> List[int]:
        """IDs of users who started a chat session at or after ``since``."""
        result = await self.db.execute(
            select(ChatSession.user_id)
            .where(ChatSession.start_time >= since)
            .distinct()
            .order_by(ChatSession.user_id)
        )
        return list(result.scalars().all())

    async def create(self, user_id: int, start_time: Optional[datetime] = None) -> ChatSession:
        session = ChatSession(
            session_id=uuid.uuid4().hex,
            user_id=user_id,
            start_time=start_time or utcnow(),
            status="active",
            messages=[],
        )
        self.db.add(session)
        await self.db.flush()
        await self.db.refresh(session)
        return session

    async def append_message(self, session: ChatSession, role: str, content: str) -> ChatSession:
        """Append one message. The JSON list is replaced so the change is persisted."""
        session.messages = list(session.messages or []) + [{
            "role": role,
            "content": content,
            "timestamp": utcnow().isoformat(),
        }]
        await self.db.flush()
        return session

    async def end(self, session: ChatSession, end_time: Optional[datetime] = None) -> ChatSession:
        session.end_time = end_time or utcnow()
        session.status = "completed"
        await self.db.flush()
        return session


class JournalRepository:
    """
    Repository class for JournalEntry database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_recent(self, user_id: int, since: datetime, limit: Optional[int] = None) -> List[JournalEntry]:
        query = (
            select(JournalEntry)
            .where(JournalEntry.user_id == user_id, JournalEntry.created_at >= since)
            .order_by(JournalEntry.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, user_id: int, data: dict) -> JournalEntry:
        entry = JournalEntry(
            user_id=user_id,
            title=data["title"],
            content=data["content"],
            mood=data["mood"],
            tags=list(data.get("tags") or []),
            emotional_state=data.get("emotional_state"),
        )
        if data.get("created_at"):
            entry.created_at = data["created_at"]
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry


class MoodRepository:
    """
    Repository class for MoodEntry database operations.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_recent(self, user_id: int, since: datetime, limit: Optional[int] = None) -> List[MoodEntry]:
        query = (
            select(MoodEntry)
            .where(MoodEntry.user_id == user_id, MoodEntry.created_at >= since)
            .order_by(MoodEntry.created_at.desc())
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def create(self, user_id: int, score: int, note: Optional[str] = None,
                     created_at: Optional[datetime] = None) -> MoodEntry:
        entry = MoodEntry(user_id=user_id, score=score, note=note)
        if created_at:
            entry.created_at = created_at
        self.db.add(entry)
        await self.db.flush()
        await self.db.refresh(entry)
        return entry
