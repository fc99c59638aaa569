"""
Tests for weekly report building and the weekly report scheduler
"""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select

from database_models import User, MoodEntry, JournalEntry, WeeklyReport
from jobs.background_queue import BackgroundQueue
from jobs.weekly_report_scheduler import run_weekly_reports_once, start_weekly_reports, JOB_ID
from services.weekly_report_service import (
    WeeklyReportService,
    mood_trend,
    top_emotions,
    progress_highlights,
)
from tests.conftest import TestAsyncSessionLocal

NOW = datetime(2026, 3, 14, 0, 0, 0)


def test_mood_trend_compares_halves():
    assert mood_trend([40, 45, 60, 70]) == "improving"
    assert mood_trend([70, 60, 45, 40]) == "declining"
    assert mood_trend([50, 50.2, 50.4]) == "stable"
    assert mood_trend([50]) == "stable"


def test_top_emotions_ranked_by_count():
    journals = [SimpleNamespace(emotional_state=s) for s in ["calm", "anxious", "calm", None, "hopeful", "calm", "anxious", "tired"]]
    assert top_emotions(journals) == ["calm", "anxious", "hopeful"]


def test_progress_highlights():
    journals = [
        SimpleNamespace(content="I'm grateful for my sister"),
        SimpleNamespace(content="Feeling better, some progress"),
        SimpleNamespace(content="Thankful again"),
    ]
    highlights = progress_highlights(journals, [40, 55, 60])
    assert highlights == [
        "Practiced gratitude",
        "Noticed personal growth",
        "Mood improved throughout the week",
    ]


async def add_user(db, email="weekly@example.com", name="Sam"):
    user = User(email=email, hashed_password="x", name=name)
    db.add(user)
    await db.commit()
    return user


@pytest.mark.asyncio
async def test_report_generated_from_week_of_data(test_db):
    user = await add_user(test_db)
    for day, score in enumerate([40, 50, 70, 80]):
        test_db.add(MoodEntry(user_id=user.id, score=score, created_at=NOW - timedelta(days=6 - day)))
    test_db.add(JournalEntry(
        user_id=user.id, title="Evening", content="Felt calm after a walk", mood=4,
        emotional_state="calm", created_at=NOW - timedelta(days=1),
    ))
    await test_db.commit()

    report = await WeeklyReportService(test_db).generate_for_user(user, NOW)

    assert report is not None
    assert "Hey Sam" in report.content
    assert "60.0/100" in report.content
    assert "Found moments of peace" in report.content
    assert report.report_metadata["mood_trend"] == "improving"
    assert report.report_metadata["active_days"] == 5


@pytest.mark.asyncio
async def test_no_data_means_no_report(test_db):
    user = await add_user(test_db)

    assert await WeeklyReportService(test_db).generate_for_user(user, NOW) is None


@pytest.mark.asyncio
async def test_recent_report_is_not_repeated(test_db):
    user = await add_user(test_db)
    test_db.add(MoodEntry(user_id=user.id, score=60, created_at=NOW - timedelta(days=1)))
    test_db.add(WeeklyReport(user_id=user.id, content="earlier", report_metadata={},
                             created_at=NOW - timedelta(days=3)))
    await test_db.commit()

    assert await WeeklyReportService(test_db).generate_for_user(user, NOW) is None


@pytest.mark.asyncio
async def test_scheduler_queues_one_job_per_user(test_db):
    active = await add_user(test_db, "active@example.com")
    await add_user(test_db, "idle@example.com")
    test_db.add(MoodEntry(user_id=active.id, score=55, created_at=NOW - timedelta(days=2)))
    await test_db.commit()

    queue = BackgroundQueue(concurrency=1)
    submitted = await run_weekly_reports_once(queue, TestAsyncSessionLocal, NOW)
    await queue.join()

    reports = (await test_db.execute(select(WeeklyReport))).scalars().all()
    assert submitted == 2
    assert [r.user_id for r in reports] == [active.id]


def test_weekly_schedule_is_saturday_midnight():
    scheduler = AsyncIOScheduler(timezone="UTC")

    job = start_weekly_reports(scheduler)

    assert job.id == JOB_ID
    fields = {f.name: str(f) for f in job.trigger.fields}
    assert fields["day_of_week"] == "sat"
    assert fields["hour"] == "0"
    assert fields["minute"] == "0"
