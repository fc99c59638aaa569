"""
Tests for the subscription maintenance job: trial transitions, lapsed expiry,
reminders, mirror reconciliation and idempotence
"""
from datetime import datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import select

from crud.notification import NotificationRepository
from database_models import User, Subscription, Notification
from jobs.subscription_maintenance import SubscriptionMaintenanceJob, JOB_ID
from tests.conftest import TestAsyncSessionLocal

NOW = datetime(2026, 3, 10, 12, 0, 0)


async def seed(db, email="member@example.com", **subscription_fields):
    user = User(email=email, hashed_password="x", name="Member")
    db.add(user)
    await db.flush()

    fields = {"plan_id": "monthly", "status": "trialing", "auto_renew": True}
    fields.update(subscription_fields)
    subscription = Subscription(user_id=user.id, **fields)
    db.add(subscription)
    await db.flush()

    user.subscription_id = subscription.id
    if subscription.status in ("trialing", "active"):
        user.subscription_is_active = True
        user.subscription_tier = "premium"
    if subscription.status == "trialing":
        user.trial_started_at = subscription.trial_starts_at
        user.trial_ends_at = subscription.trial_ends_at
    await db.commit()
    return user, subscription


def make_job():
    return SubscriptionMaintenanceJob(session_factory=TestAsyncSessionLocal)


@pytest.mark.asyncio
async def test_due_trial_becomes_active_for_one_plan_period(test_db):
    user, trial = await seed(
        test_db,
        trial_starts_at=NOW - timedelta(days=8),
        trial_ends_at=NOW - timedelta(days=1),
    )

    result = await make_job().run_once(NOW)

    await test_db.refresh(trial)
    await test_db.refresh(user)
    assert result.activated == 1
    assert trial.status == "active"
    assert trial.activated_at == NOW
    assert trial.expires_at == NOW + timedelta(days=30)
    assert trial.start_date == trial.trial_starts_at
    assert user.subscription_tier == "premium"
    assert user.subscription_is_active is True
    assert user.subscription_expires_at == NOW + timedelta(days=30)
    assert user.trial_used is True
    assert user.trial_started_at is None
    assert user.trial_ends_at is None


@pytest.mark.asyncio
async def test_annual_trial_converts_for_a_year(test_db):
    _, trial = await seed(test_db, plan_id="annually", trial_ends_at=NOW - timedelta(hours=1))

    await make_job().run_once(NOW)

    await test_db.refresh(trial)
    assert trial.expires_at == NOW + timedelta(days=365)


@pytest.mark.asyncio
async def test_cancelled_trial_expires_and_user_goes_free(test_db):
    trial_end = NOW - timedelta(hours=2)
    user, trial = await seed(
        test_db,
        trial_ends_at=trial_end,
        auto_renew=False,
        cancelled_at=NOW - timedelta(days=3),
    )

    result = await make_job().run_once(NOW)

    await test_db.refresh(trial)
    await test_db.refresh(user)
    assert result.expired_trials == 1
    assert trial.status == "expired"
    assert trial.expires_at == trial_end
    assert user.subscription_tier == "free"
    assert user.subscription_is_active is False
    assert user.subscription_expires_at == trial_end
    assert user.trial_ends_at is None


@pytest.mark.asyncio
async def test_trial_not_yet_due_is_untouched(test_db):
    _, trial = await seed(test_db, trial_ends_at=NOW + timedelta(days=5))

    result = await make_job().run_once(NOW)

    await test_db.refresh(trial)
    assert trial.status == "trialing"
    assert result.activated == 0


@pytest.mark.asyncio
async def test_lapsed_active_subscription_expires(test_db):
    user, subscription = await seed(
        test_db,
        status="active",
        activated_at=NOW - timedelta(days=31),
        expires_at=NOW - timedelta(days=1),
    )

    result = await make_job().run_once(NOW)

    await test_db.refresh(subscription)
    await test_db.refresh(user)
    assert result.expired_lapsed == 1
    assert subscription.status == "expired"
    assert subscription.auto_renew is False
    assert user.subscription_tier == "free"
    assert user.subscription_is_active is False


@pytest.mark.asyncio
async def test_second_run_changes_nothing(test_db):
    await seed(test_db, email="a@example.com", trial_ends_at=NOW - timedelta(days=1))
    await seed(test_db, email="b@example.com", status="active", expires_at=NOW - timedelta(minutes=1))

    job = make_job()
    first = await job.run_once(NOW)
    test_db.expire_all()
    snapshot = [
        (s.id, s.status, s.expires_at, s.auto_renew)
        for s in (await test_db.execute(select(Subscription).order_by(Subscription.id))).scalars()
    ]

    second = await job.run_once(NOW)

    test_db.expire_all()
    after = [
        (s.id, s.status, s.expires_at, s.auto_renew)
        for s in (await test_db.execute(select(Subscription).order_by(Subscription.id))).scalars()
    ]
    assert first.activated == 1 and first.expired_lapsed == 1
    assert (second.activated, second.expired_trials, second.expired_lapsed, second.reconciled) == (0, 0, 0, 0)
    assert after == snapshot


@pytest.mark.asyncio
async def test_trial_ending_soon_is_reminded_once(test_db):
    user, trial = await seed(test_db, trial_ends_at=NOW + timedelta(hours=24))

    job = make_job()
    first = await job.run_once(NOW)
    second = await job.run_once(NOW + timedelta(hours=1))

    notifications = (
        await test_db.execute(select(Notification).where(Notification.user_id == user.id))
    ).scalars().all()
    await test_db.refresh(trial)
    assert first.reminded == 1
    assert second.reminded == 0
    assert len(notifications) == 1
    assert notifications[0].type == "billing"
    assert trial.trial_reminder_sent_at == NOW
    assert trial.status == "trialing"


@pytest.mark.asyncio
async def test_stale_mirror_is_reconciled(test_db):
    """An active subscription whose owner was never mirrored (interrupted earlier pass)."""
    user, subscription = await seed(
        test_db,
        status="active",
        activated_at=NOW - timedelta(days=2),
        expires_at=NOW + timedelta(days=28),
    )
    user.subscription_is_active = False
    user.subscription_tier = "free"
    await test_db.commit()

    result = await make_job().run_once(NOW)

    await test_db.refresh(user)
    assert result.reconciled == 1
    assert user.subscription_is_active is True
    assert user.subscription_tier == "premium"
    assert user.subscription_expires_at == subscription.expires_at



@pytest.mark.asyncio
async def test_failed_reminder_does_not_block_transitions(test_db, monkeypatch):
    _, ending_soon = await seed(test_db, "soon@example.com", trial_ends_at=NOW + timedelta(hours=10))
    _, due = await seed(
        test_db,
        "due@example.com",
        trial_starts_at=NOW - timedelta(days=8),
        trial_ends_at=NOW - timedelta(hours=1),
    )

    async def failing_create(self, user_id, type, message):
        raise RuntimeError("notification store unavailable")

    monkeypatch.setattr(NotificationRepository, "create", failing_create)

    result = await make_job().run_once(NOW)

    await test_db.refresh(ending_soon)
    await test_db.refresh(due)
    assert result.failed is False
    assert result.reminded == 0
    assert result.activated == 1
    assert due.status == "active"
    assert ending_soon.status == "trialing"
    assert ending_soon.trial_reminder_sent_at is None


@pytest.mark.asyncio
async def test_interrupted_paid_activation_mirror_follows_latest_subscription(test_db):
    """Old row expired and new paid row committed, but the mirror write never happened."""
    user, old = await seed(
        test_db,
        status="expired",
        auto_renew=False,
        activated_at=NOW - timedelta(days=40),
        expires_at=NOW - timedelta(hours=2),
    )
    user.subscription_is_active = True
    user.subscription_tier = "premium"
    paid = Subscription(
        user_id=user.id,
        plan_id="monthly",
        status="active",
        auto_renew=True,
        activated_at=NOW - timedelta(hours=2),
        expires_at=NOW + timedelta(days=30),
        stripe_session_id="cs_interrupted",
    )
    test_db.add(paid)
    await test_db.commit()

    result = await make_job().run_once(NOW)

    await test_db.refresh(user)
    assert result.reconciled == 1
    assert user.subscription_tier == "premium"
    assert user.subscription_is_active is True
    assert user.subscription_id == paid.id
    assert user.subscription_expires_at == paid.expires_at

    second = await make_job().run_once(NOW)
    assert second.reconciled == 0


@pytest.mark.asyncio
async def test_run_once_never_raises():
    def broken_factory():
        raise RuntimeError("database unreachable")

    result = await SubscriptionMaintenanceJob(session_factory=broken_factory).run_once(NOW)

    assert result.failed is True


def test_start_recurring_registers_interval_job():
    scheduler = AsyncIOScheduler(timezone="UTC")

    job = make_job().start_recurring(scheduler, interval_minutes=15)

    assert job.id == JOB_ID
    assert scheduler.get_job(JOB_ID) is not None
    assert job.trigger.interval == timedelta(minutes=15)
