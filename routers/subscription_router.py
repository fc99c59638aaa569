"""
Subscription Router - status, trial start and cancellation for the signed-in user
"""

import logging
from fastapi import APIRouter, Depends, Body
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from backend.utils.responses import success_response, error_response
from config.settings import PLAN_MONTHLY
from database import get_db
from database_models import User
from services.subscription_service import SubscriptionService, SubscriptionError, serialize_subscription

logger = logging.getLogger(__name__)

subscription_router = APIRouter(prefix="/api/subscription", tags=["subscription"])


@subscription_router.get("/status")
async def get_subscription_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Current tier, mirror fields and live subscription record."""
    status = await SubscriptionService(db).get_status(user)
    return success_response(status)


@subscription_router.post("/start-trial")
async def start_trial(
    plan_id: str = Body(default=PLAN_MONTHLY, embed=True),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Start the free trial. When it ends without a cancellation the
    subscription converts to ``plan_id`` (monthly or annually).
    """
    try:
        subscription = await SubscriptionService(db).start_trial(user, plan_id)
    except SubscriptionError as e:
        return error_response("TRIAL_NOT_AVAILABLE", status=400, message=str(e))
    return success_response(serialize_subscription(subscription), message="Trial started", status=201)


@subscription_router.post("/cancel")
async def cancel_subscription(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """Stop renewal; premium access lasts until the current period ends."""
    try:
        subscription = await SubscriptionService(db).cancel(user)
    except SubscriptionError as e:
        return error_response("NO_SUBSCRIPTION", status=404, message=str(e))
    return success_response(serialize_subscription(subscription), message="Subscription cancelled")
