"""PayPal webhook receiver - subscription lifecycle events"""

import logging
from datetime import timedelta
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...database import get_db
from ...models import MembershipStatus, utcnow
from ...webhook_security import verify_paypal_webhook
from .activator import SubscriptionActivator
from .paypal_service import PayPalService
from .repository import BillingRepository
from .router import get_paypal_service

logger = logging.getLogger(__name__)

webhooks_router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

RENEWAL_PERIOD = timedelta(days=30)


class PayPalWebhookProcessor:
    """Routes verified PayPal events to the activator and the repository"""

    def __init__(self, db: Session, paypal: PayPalService, clock: Callable = utcnow):
        self.db = db
        self.repo = BillingRepository()
        self.activator = SubscriptionActivator(db, paypal, clock=clock)
        self._clock = clock
        self._handlers = {
            "BILLING.SUBSCRIPTION.ACTIVATED": self.handle_activated,
            "PAYMENT.SALE.COMPLETED": self.handle_payment_completed,
            "BILLING.SUBSCRIPTION.CANCELLED": self.handle_cancelled,
            "BILLING.SUBSCRIPTION.SUSPENDED": self.handle_ended,
            "BILLING.SUBSCRIPTION.EXPIRED": self.handle_ended,
        }

    def process(self, event: dict) -> dict:
        event_id = event.get("id")
        event_type = event.get("event_type")
        resource = event.get("resource") or {}

        if event_id and self.repo.webhook_event_seen(self.db, event_id):
            logger.info(f"🔁 Duplicate PayPal webhook {event_id} ({event_type}) ignored")
            return {"received": True, "deduped": True}

        logger.info(f"📥 PayPal webhook received: {event_type} ({event_id})")
        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled PayPal event type: {event_type}")
        else:
            handler(resource)

        if event_id:
            self.repo.record_webhook_event(self.db, event_id, event_type or "unknown")
        return {"received": True}

    def handle_activated(self, resource: dict) -> None:
        result = self.activator.activate_from_webhook(resource)
        logger.info(f"Webhook activation for {resource.get('id')}: {result.message}")

    def handle_payment_completed(self, resource: dict) -> None:
        # Sale resources carry the subscription id as billing_agreement_id
        subscription_id = resource.get("billing_agreement_id")
        if not subscription_id:
            logger.info(f"Payment {resource.get('id')} is not tied to a subscription, ignoring")
            return

        subscription = self.repo.get_subscription(self.db, subscription_id)
        if not subscription:
            logger.warning(f"Subscription not found for renewal: {subscription_id}")
            return

        now = self._clock()
        period_end = now + RENEWAL_PERIOD
        self.repo.update_subscription(
            self.db,
            subscription_id,
            status="ACTIVE",
            current_period_start=now,
            current_period_end=period_end,
            next_billing_time=period_end,
        )
        self.repo.update_profile(
            self.db,
            subscription.user_id,
            membership_status=MembershipStatus.PRO.value,
            membership_expires=period_end,
        )
        logger.info(f"✅ Renewed Pro membership for user {subscription.user_id} until {period_end.isoformat()}")

    def handle_cancelled(self, resource: dict) -> None:
        subscription_id = resource.get("id")
        subscription = self.repo.update_subscription(self.db, subscription_id, status="CANCELLED")
        if not subscription:
            logger.warning(f"Subscription not found for cancellation: {subscription_id}")
            return
        # Access continues until current_period_end
        logger.info(
            f"Subscription {subscription_id} cancelled for user {subscription.user_id}; "
            f"Pro access kept until {subscription.current_period_end}"
        )

    def handle_ended(self, resource: dict) -> None:
        subscription_id = resource.get("id")
        status = (resource.get("status") or "").upper() or "EXPIRED"
        subscription = self.repo.update_subscription(self.db, subscription_id, status=status)
        if not subscription:
            logger.warning(f"Subscription not found for {status.lower()} event: {subscription_id}")
            return

        self.repo.update_profile(
            self.db,
            subscription.user_id,
            membership_status=MembershipStatus.FREE.value,
            membership_plan=None,
            membership_expires=None,
        )
        logger.info(f"⬇️ User {subscription.user_id} downgraded to free ({status} {subscription_id})")


@webhooks_router.post("/paypal")
async def handle_paypal_webhook(
    request: Request,
    db: Session = Depends(get_db),
    paypal: PayPalService = Depends(get_paypal_service),
):
    """Receive PayPal subscription webhooks"""
    try:
        event = await request.json()
    except ValueError as e:
        raise HTTPException(status_code=400, detail="Invalid JSON payload") from e
    if not isinstance(event, dict):
        raise HTTPException(status_code=400, detail="Invalid webhook payload")

    await verify_paypal_webhook(request, event, paypal)

    try:
        return PayPalWebhookProcessor(db, paypal).process(event)
    except Exception as e:
        logger.error(f"❌ Failed to process PayPal webhook {event.get('id')}: {e}")
        raise HTTPException(status_code=500, detail="Webhook processing failed") from e
