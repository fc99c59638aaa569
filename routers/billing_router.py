"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST to avoid middleware conflicts
"""

import logging
from fastapi import APIRouter, Request, Depends, Body
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from auth import get_current_user
from backend.utils.responses import success_response, error_response
from config.settings import settings, PLAN_MONTHLY, PLAN_ANNUALLY
from database import get_db
from database_models import User
from services.billing_service import BillingService

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


# WEBHOOK ENDPOINT - MUST BE DEFINED FIRST TO AVOID MIDDLEWARE CONFLICTS
@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db)
):
    """
    Handle Stripe webhook events with signature verification.

    Only verified events are processed to prevent spoofing attacks.
    Always returns 200 OK to Stripe to prevent retries.
    """
    try:
        webhook_secret = settings.stripe_webhook_secret
        if not webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET environment variable is not set")
            # Return 200 to Stripe even if secret is missing to prevent retries
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Webhook secret not configured"}
            )

        # Get raw request body (required for signature verification)
        payload = await request.body()

        stripe_signature = request.headers.get("stripe-signature")
        if not stripe_signature:
            logger.error("Missing Stripe-Signature header")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Missing signature header"}
            )

        try:
            event = stripe.Webhook.construct_event(
                payload,
                stripe_signature,
                webhook_secret
            )
        except stripe.SignatureVerificationError as e:
            # Signature verification failed - this is a fake request
            logger.error(f"Stripe webhook signature verification failed: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid webhook signature"}
            )
        except ValueError as e:
            # Invalid payload format
            logger.error(f"Invalid webhook payload: {e}")
            return JSONResponse(
                status_code=200,
                content={"ok": False, "received": True, "error": "Invalid payload format"}
            )

        result = await BillingService(db).process_webhook(event)

        # Always return 200 to Stripe (even on processing failure) to prevent retries
        success = not result.get("is_error", True)
        return JSONResponse(
            status_code=200,
            content={
                "ok": success,
                "received": True,
                "event_type": event["type"]
            }
        )

    except Exception as e:
        logger.error(f"Webhook error: {e}", exc_info=True)
        return JSONResponse(
            status_code=200,
            content={"ok": False, "received": True, "error": str(e)}
        )


@billing_router.post("/create-checkout-session")
async def create_checkout_session(
    plan_id: str = Body(default=PLAN_MONTHLY, embed=True),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a Stripe Checkout session for the signed-in user.

    Returns:
        JSON response with checkout session URL
    """
    if plan_id not in (PLAN_MONTHLY, PLAN_ANNUALLY):
        return error_response("INVALID_PLAN", status=400, message=f"Unknown plan: {plan_id}")

    result = await BillingService(db).create_checkout_session(user, plan_id)
    if result.get("is_error"):
        return error_response(result.get("error", "Unknown error"))
    return success_response(result["data"])
