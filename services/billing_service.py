"""
Billing Service - Stripe checkout for the premium plans and activation of
paid subscriptions from verified webhook events
"""

import logging
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
import stripe

from config.settings import settings, PLAN_MONTHLY, PLAN_ANNUALLY
from database_models import User
from services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Initialize Stripe client
if settings.stripe_secret_key:
    stripe.api_key = settings.stripe_secret_key
else:
    logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")

CHECKOUT_COMPLETED = "checkout.session.completed"


def _price_for(plan_id: str) -> Optional[str]:
    return {
        PLAN_MONTHLY: settings.stripe_price_monthly,
        PLAN_ANNUALLY: settings.stripe_price_annually,
    }.get(plan_id)


def _field(obj, key, default=None):
    """Read a key from a Stripe object or plain dict."""
    try:
        value = obj[key]
    except (KeyError, TypeError):
        return default
    return default if value is None else value


class BillingService:
    """
    Service class for handling billing-related business logic.
    """

    def __init__(self, db: AsyncSession):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
        """
        self.db = db

    async def create_checkout_session(self, user: User, plan_id: str):
        """
        Create a Stripe Checkout session for ``plan_id``.

        Args:
            user: Signed-in user paying for the plan
            plan_id: "monthly" or "annually"

        Returns:
            Normalized response: {"data": url, "is_error": False} or {"error": str(e), "is_error": True}
        """
        if not settings.stripe_secret_key:
            logger.error("STRIPE_SECRET_KEY is not set. Cannot create checkout session.")
            return {"error": "STRIPE_SECRET_KEY is not set. Cannot create checkout session.", "is_error": True}

        price_id = _price_for(plan_id)
        if not price_id:
            logger.error(f"No Stripe price configured for plan '{plan_id}'")
            return {"error": f"No Stripe price configured for plan '{plan_id}'", "is_error": True}

        try:
            # Get frontend URL from config
            frontend_url = settings.frontend_url or "http://localhost:3000"

            checkout_session = stripe.checkout.Session.create(
                customer_email=user.email,
                client_reference_id=str(user.id),
                payment_method_types=["card"],
                line_items=[{
                    "price": price_id,
                    "quantity": 1,
                }],
                mode="subscription",
                success_url=f"{frontend_url}/billing/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{frontend_url}/billing/cancel",
                metadata={
                    "user_id": str(user.id),
                    "plan_id": plan_id,
                }
            )

            return {"data": checkout_session.url, "is_error": False}
        except Exception as e:
            logger.error(f"Failed to create checkout session: {e}", exc_info=True)
            return {"error": str(e), "is_error": True}

    async def process_webhook(self, event):
        """
        Process a verified Stripe webhook event.
        ``checkout.session.completed`` activates the paid plan; other events are acknowledged.

        Args:
            event: Verified Stripe Event object (from webhook signature verification)

        Returns:
            Normalized response: {"data": True, "is_error": False} or {"error": str(e), "is_error": True}
        """
        try:
            event_type = _field(event, "type")
            logger.info(f"Processing Stripe webhook event: {event_type}")
            if event_type != CHECKOUT_COMPLETED:
                return {"data": True, "is_error": False}

            session = event["data"]["object"]
            metadata = _field(session, "metadata", {})
            user_id = _field(metadata, "user_id") or _field(session, "client_reference_id")
            plan_id = _field(metadata, "plan_id", PLAN_MONTHLY)
            if not user_id:
                logger.error(f"Checkout session {_field(session, 'id')} carries no user id")
                return {"error": "Missing user id in checkout session", "is_error": True}

            amount_total = _field(session, "amount_total", 0)
            await SubscriptionService(self.db).activate_paid(
                int(user_id),
                plan_id,
                stripe_session_id=_field(session, "id"),
                amount=amount_total / 100,
                currency=str(_field(session, "currency", "usd")).upper(),
            )
            return {"data": True, "is_error": False}

        except Exception as e:
            logger.error(f"Error processing webhook: {e}", exc_info=True)
            await self.db.rollback()
            return {"error": str(e), "is_error": True}
