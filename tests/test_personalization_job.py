"""
Tests for the scheduled personalization analysis
"""
from datetime import datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

import jobs.personalization_analysis_job as personalization_job
from database_models import User, ChatSession, Personalization
from jobs.personalization_analysis_job import (
    analyze_user_personalization,
    run_personalization_analysis_for_all_users,
    start_personalization_analysis,
    JOB_ID,
)
from tests.conftest import TestAsyncSessionLocal

NOW = datetime(2026, 3, 10, 12, 0, 0)


async def add_user_with_sessions(db, email, session_count=3, days_ago=1):
    user = User(email=email, hashed_password="x")
    db.add(user)
    await db.flush()
    for n in range(session_count):
        start = NOW.replace(hour=19) - timedelta(days=days_ago + n)
        db.add(ChatSession(
            session_id=f"{email}-{n}",
            user_id=user.id,
            start_time=start,
            end_time=start + timedelta(minutes=25),
            messages=[{"role": "user", "content": "I worry about work"}] * 11,
        ))
    await db.commit()
    return user


@pytest.mark.asyncio
async def test_analysis_creates_profile(test_db):
    user = await add_user_with_sessions(test_db, "new@example.com")

    updated = await analyze_user_personalization(user.id, TestAsyncSessionLocal, NOW)

    assert updated is True
    profile = await test_db.get(Personalization, 1)
    assert profile is not None
    assert profile.user_id == user.id
    assert profile.time_patterns["hour_of_day"] == [19]
    assert profile.engagement["engagement_trend"] == "increasing"
    assert profile.last_analysis == NOW


@pytest.mark.asyncio
async def test_recently_analyzed_user_is_skipped(test_db):
    user = await add_user_with_sessions(test_db, "recent@example.com")
    test_db.add(Personalization(user_id=user.id, last_analysis=NOW - timedelta(days=1)))
    await test_db.commit()

    updated = await analyze_user_personalization(user.id, TestAsyncSessionLocal, NOW)

    assert updated is False


@pytest.mark.asyncio
async def test_user_without_history_is_not_updated(test_db):
    user = User(email="quiet@example.com", hashed_password="x")
    test_db.add(user)
    await test_db.commit()

    updated = await analyze_user_personalization(user.id, TestAsyncSessionLocal, NOW)

    assert updated is False
    assert await test_db.get(Personalization, 1) is None


@pytest.mark.asyncio
async def test_errors_are_contained():
    def broken_factory():
        raise RuntimeError("database unreachable")

    assert await analyze_user_personalization(1, broken_factory, NOW) is False


@pytest.mark.asyncio
async def test_all_users_run_in_batches(test_db, monkeypatch):
    active = [await add_user_with_sessions(test_db, f"u{n}@example.com", session_count=1) for n in range(12)]
    await add_user_with_sessions(test_db, "lapsed@example.com", session_count=1, days_ago=40)

    seen = []

    async def fake_analyze(user_id, session_factory, now):
        seen.append(user_id)
        return user_id % 2 == 0

    monkeypatch.setattr(personalization_job, "analyze_user_personalization", fake_analyze)

    updated = await run_personalization_analysis_for_all_users(TestAsyncSessionLocal, NOW, batch_pause=0)

    assert sorted(seen) == sorted(u.id for u in active)
    assert updated == sum(1 for u in active if u.id % 2 == 0)


def test_schedule_uses_interval_hours():
    scheduler = AsyncIOScheduler(timezone="UTC")

    job = start_personalization_analysis(scheduler, interval_hours=12)

    assert job.id == JOB_ID
    assert job.trigger.interval == timedelta(hours=12)
