"""
Weekly Report Service - summarizes a user's week of mood and journal
activity into a short plain-text report.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from crud.tracking import ChatSessionRepository, JournalRepository, MoodRepository
from crud.weekly_report import WeeklyReportRepository
from database_models import JournalEntry, MoodEntry, User, WeeklyReport, utcnow

logger = logging.getLogger(__name__)

REPORT_PERIOD = timedelta(days=7)

# Journal phrases that earn a highlight, checked in this order
HIGHLIGHT_KEYWORDS = [
    (("grateful", "thankful"), "Practiced gratitude"),
    (("progress", "better"), "Noticed personal growth"),
    (("calm", "peaceful"), "Found moments of peace"),
]
MOOD_IMPROVED = "Mood improved throughout the week"

NEXT_WEEK_TIPS = [
    "Start each morning with one positive intention",
    "Take a 5-minute break when you feel overwhelmed",
    "Reflect on your day before bed",
]


@dataclass
class WeeklyData:
    week_start: datetime
    week_end: datetime
    mood_count: int = 0
    journal_count: int = 0
    chat_count: int = 0
    average_mood: float = 0.0
    mood_trend: str = "stable"  # improving | declining | stable
    top_emotions: List[str] = field(default_factory=list)
    active_days: int = 0
    highlights: List[str] = field(default_factory=list)

    @property
    def has_data(self) -> bool:
        return self.mood_count > 0 or self.journal_count > 0


def mood_trend(scores: Sequence[float]) -> str:
    """Compare the later half of the week's scores with the earlier half."""
    if len(scores) < 2:
        return "stable"
    middle = len(scores) // 2
    first, second = scores[:middle], scores[middle:]
    difference = sum(second) / len(second) - sum(first) / len(first)
    if difference > 0.5:
        return "improving"
    if difference < -0.5:
        return "declining"
    return "stable"


def top_emotions(journals: Sequence[JournalEntry], limit: int = 3) -> List[str]:
    counts = {}
    for entry in journals:
        if entry.emotional_state:
            counts[entry.emotional_state] = counts.get(entry.emotional_state, 0) + 1
    return [emotion for emotion, _ in sorted(counts.items(), key=lambda item: -item[1])[:limit]]


def active_days(moods: Sequence[MoodEntry], journals: Sequence[JournalEntry]) -> int:
    days = {m.created_at.date() for m in moods}
    days.update(j.created_at.date() for j in journals)
    return len(days)


def progress_highlights(journals: Sequence[JournalEntry], scores: Sequence[float]) -> List[str]:
    highlights = []
    for entry in journals:
        content = (entry.content or "").lower()
        for keywords, highlight in HIGHLIGHT_KEYWORDS:
            if any(k in content for k in keywords) and highlight not in highlights:
                highlights.append(highlight)
    if len(scores) > 1 and scores[-1] > scores[0] + 1:
        highlights.append(MOOD_IMPROVED)
    return highlights


def render_report(data: WeeklyData, user_name: str) -> str:
    lines = [
        f"Weekly Wellness Report: {data.week_start.date().isoformat()} to {data.week_end.date().isoformat()}",
        "",
        f"Hey {user_name}, here's a quick look at how your week unfolded.",
        "",
    ]
    if data.mood_count:
        summary = f"Your average mood this week was {data.average_mood}/100."
        if data.mood_trend == "improving":
            summary += " Your mood improved throughout the week, that's a great sign!"
        elif data.mood_trend == "declining":
            summary += " I noticed your mood dipped a bit this week."
        else:
            summary += " Your mood stayed pretty steady this week."
        lines += [summary, ""]
    if data.top_emotions:
        lines += [f"You most often felt: {', '.join(data.top_emotions)}.", ""]
    if data.highlights:
        lines.append("Some highlights from your week:")
        lines += [f"- {h}" for h in data.highlights]
        lines.append("")
    if data.active_days:
        lines += [f"You were active {data.active_days} days this week. That's consistency!", ""]
    lines.append("For next week, try these small things:")
    lines += [f"- {tip}" for tip in NEXT_WEEK_TIPS]
    lines += [
        "",
        "You're doing important work by paying attention to your mental health. "
        "Keep caring for yourself in small ways, they add up.",
    ]
    return "\n".join(lines)


class WeeklyReportService:
    """
    Service class for building and storing weekly reports.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.reports = WeeklyReportRepository(db)
        self.moods = MoodRepository(db)
        self.journals = JournalRepository(db)
        self.sessions = ChatSessionRepository(db)

    async def gather_weekly_data(self, user_id: int, now: Optional[datetime] = None) -> WeeklyData:
        """Collect the last seven days of moods, journals and chats for ``user_id``."""
        week_end = now or utcnow()
        week_start = week_end - REPORT_PERIOD

        # Repositories return newest first; the trend needs chronological order
        moods = list(reversed(await self.moods.list_recent(user_id, week_start)))
        journals = list(reversed(await self.journals.list_recent(user_id, week_start)))
        sessions = await self.sessions.list_recent(user_id, week_start)

        scores = [m.score for m in moods]
        return WeeklyData(
            week_start=week_start,
            week_end=week_end,
            mood_count=len(moods),
            journal_count=len(journals),
            chat_count=len(sessions),
            average_mood=round(sum(scores) / len(scores), 1) if scores else 0.0,
            mood_trend=mood_trend(scores),
            top_emotions=top_emotions(journals),
            active_days=active_days(moods, journals),
            highlights=progress_highlights(journals, scores),
        )

    async def generate_for_user(self, user: User, now: Optional[datetime] = None) -> Optional[WeeklyReport]:
        """
        Store a report for ``user`` unless one was made in the last seven days
        or the week holds no mood or journal entries.

        Returns:
            The new WeeklyReport, or None when skipped
        """
        now = now or utcnow()
        if await self.reports.get_latest_since(user.id, now - REPORT_PERIOD):
            return None

        data = await self.gather_weekly_data(user.id, now)
        if not data.has_data:
            logger.info(f"Skipping weekly report for user {user.id} - no data")
            return None

        report = await self.reports.create(
            user.id,
            render_report(data, user.name or "User"),
            {
                "week_start": data.week_start.isoformat(),
                "week_end": data.week_end.isoformat(),
                "generated_at": now.isoformat(),
                "average_mood": data.average_mood,
                "mood_trend": data.mood_trend,
                "active_days": data.active_days,
            },
            created_at=now,
        )
        logger.info(f"Generated weekly report for user {user.id}")
        return report
