"""
Tests for paid plan activation from Stripe checkout events
"""
import pytest
from sqlalchemy import select

from database_models import User, Subscription
from services.billing_service import BillingService
from services.subscription_service import SubscriptionService


def checkout_event(user_id, plan_id="monthly", session_id="cs_test_123", amount_total=999):
    return {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": session_id,
                "client_reference_id": str(user_id),
                "metadata": {"user_id": str(user_id), "plan_id": plan_id},
                "amount_total": amount_total,
                "currency": "usd",
            }
        },
    }


async def add_user(db):
    user = User(email="payer@example.com", hashed_password="x")
    db.add(user)
    await db.commit()
    return user


@pytest.mark.asyncio
async def test_checkout_completed_activates_premium(test_db):
    user = await add_user(test_db)

    result = await BillingService(test_db).process_webhook(checkout_event(user.id, plan_id="annually", amount_total=7999))

    assert result == {"data": True, "is_error": False}
    subscription = (await test_db.execute(select(Subscription))).scalar_one()
    assert subscription.status == "active"
    assert subscription.plan_id == "annually"
    assert subscription.amount == 79.99
    assert subscription.currency == "USD"
    assert (subscription.expires_at - subscription.activated_at).days == 365

    await test_db.refresh(user)
    assert user.subscription_tier == "premium"
    assert user.subscription_is_active is True
    assert user.subscription_id == subscription.id


@pytest.mark.asyncio
async def test_replayed_event_is_idempotent(test_db):
    user = await add_user(test_db)
    service = BillingService(test_db)

    await service.process_webhook(checkout_event(user.id))
    await service.process_webhook(checkout_event(user.id))

    subscriptions = (await test_db.execute(select(Subscription))).scalars().all()
    assert len(subscriptions) == 1


@pytest.mark.asyncio
async def test_payment_supersedes_trial(test_db):
    user = await add_user(test_db)
    trial = await SubscriptionService(test_db).start_trial(user, "monthly")
    await test_db.commit()

    await BillingService(test_db).process_webhook(checkout_event(user.id))

    await test_db.refresh(trial)
    await test_db.refresh(user)
    assert trial.status == "expired"
    assert trial.auto_renew is False
    assert user.trial_ends_at is None
    assert user.subscription_plan_id == "monthly"


@pytest.mark.asyncio
async def test_other_events_are_acknowledged(test_db):
    result = await BillingService(test_db).process_webhook({"type": "invoice.paid", "data": {"object": {}}})

    assert result == {"data": True, "is_error": False}
    assert (await test_db.execute(select(Subscription))).scalars().all() == []


@pytest.mark.asyncio
async def test_event_without_user_is_an_error(test_db):
    event = {"type": "checkout.session.completed", "data": {"object": {"id": "cs_anon", "metadata": {}}}}

    result = await BillingService(test_db).process_webhook(event)

    assert result["is_error"] is True
