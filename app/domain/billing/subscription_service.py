"""Subscription service - Business logic for subscription management"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...models import Profile
from .activator import SubscriptionActivator
from .exceptions import (
    AuthError,
    OwnershipMismatch,
    PayPalAPIError,
    SubscriptionCreateError,
    SubscriptionNotFoundError,
)
from .paypal_service import PayPalService
from .plan_provisioner import PlanProvisioner
from .repository import BillingRepository
from .schemas import CreateSubscriptionRequest

logger = logging.getLogger(__name__)

CANCELLED_STATUS = "CANCELLED"
# PayPal answers these when the plan id is unknown or inactive
PLAN_REJECTED_STATUSES = {400, 404, 422}


def billing_http_error(e: Exception, fallback: str) -> HTTPException:
    """Translate a billing domain error into the HTTP error the client sees"""
    if isinstance(e, AuthError):
        return HTTPException(status_code=503, detail="Billing service temporarily unavailable")
    if isinstance(e, OwnershipMismatch):
        return HTTPException(status_code=403, detail="Subscription does not belong to this user")
    if isinstance(e, SubscriptionNotFoundError):
        return HTTPException(status_code=404, detail="Subscription not found")
    if isinstance(e, SubscriptionCreateError):
        return HTTPException(status_code=500, detail="Failed to create subscription")
    return HTTPException(status_code=500, detail=fallback)


class SubscriptionService:
    """Service for subscription management"""

    def __init__(self, db: Session, paypal: PayPalService, provisioner: PlanProvisioner):
        self.db = db
        self.paypal = paypal
        self.provisioner = provisioner
        self.repo = BillingRepository()
        self.activator = SubscriptionActivator(db, paypal)

    def _ensure_available(self) -> None:
        if not self.paypal.is_available():
            raise HTTPException(status_code=503, detail="Billing service temporarily unavailable")

    async def _fetch_owned(self, subscription_id: str, profile: Profile) -> dict:
        """Fetch a remote subscription, refusing anyone but its owner"""
        remote = await self.paypal.get_subscription(subscription_id)
        if remote.get("custom_id") != profile.id:
            raise OwnershipMismatch(subscription_id)
        return remote

    async def create_subscription(self, request: CreateSubscriptionRequest, profile: Profile) -> dict:
        """Create a PayPal subscription for the signed-in user and return the approval link"""
        self._ensure_available()

        email = request.user_email or profile.email
        if not email:
            raise HTTPException(status_code=400, detail="An email address is required to subscribe")
        name = request.user_name or profile.full_name

        try:
            plan_id = await self.provisioner.get_or_create_plan_id()
            created = await self.paypal.create_subscription(
                user_id=profile.id, email=email, name=name, plan_id=plan_id
            )
        except (AuthError, PayPalAPIError) as e:
            logger.error(f"Failed to create subscription for user {profile.id}: {e}")
            if isinstance(e, SubscriptionCreateError) and e.status_code in PLAN_REJECTED_STATUSES:
                logger.warning(f"PayPal rejected plan {plan_id}, resolving it again on the next request")
                self.provisioner.reset()
            raise billing_http_error(e, "Failed to create subscription") from e

        logger.info(f"✅ Created PayPal subscription {created['subscription_id']} for user {profile.id}")
        return {
            "subscriptionId": created["subscription_id"],
            "approvalUrl": created["approval_url"],
            "status": created["status"],
        }

    async def get_subscription(self, subscription_id: str, profile: Profile) -> dict:
        """Provider status of a subscription the user owns"""
        self._ensure_available()
        try:
            remote = await self._fetch_owned(subscription_id, profile)
        except (AuthError, OwnershipMismatch, PayPalAPIError) as e:
            logger.error(f"Failed to get subscription {subscription_id} for user {profile.id}: {e}")
            raise billing_http_error(e, "Failed to get subscription details") from e

        return {
            "id": remote.get("id", subscription_id),
            "status": remote.get("status"),
            "plan_id": remote.get("plan_id"),
            "next_billing_time": (remote.get("billing_info") or {}).get("next_billing_time"),
        }

    async def check_and_activate(self, subscription_id: str, profile: Profile) -> dict:
        """Activate the membership once PayPal reports the subscription active"""
        self._ensure_available()
        try:
            result = await self.activator.check_and_activate(subscription_id, profile.id)
        except (AuthError, OwnershipMismatch, PayPalAPIError) as e:
            logger.error(f"Activation check failed for {subscription_id} (user {profile.id}): {e}")
            raise billing_http_error(e, "Failed to check subscription status") from e
        return result.to_response()

    async def cancel_subscription(
        self, subscription_id: str, profile: Profile, reason: Optional[str] = None
    ) -> dict:
        """
        Cancel at PayPal. Pro access is kept until membership_expires;
        the SUSPENDED/EXPIRED webhooks do the downgrade.
        """
        self._ensure_available()
        try:
            await self._fetch_owned(subscription_id, profile)
            await self.paypal.cancel_subscription(subscription_id, reason)
        except (AuthError, OwnershipMismatch, PayPalAPIError) as e:
            logger.error(f"Failed to cancel subscription {subscription_id} for user {profile.id}: {e}")
            raise billing_http_error(e, "Failed to cancel subscription") from e

        self.repo.update_subscription(self.db, subscription_id, status=CANCELLED_STATUS)
        logger.info(f"✅ Cancelled subscription {subscription_id} for user {profile.id}")
        return {
            "success": True,
            "message": "Subscription cancelled. Pro access remains until the end of the billing period",
        }

    def get_membership(self, profile: Profile) -> dict:
        """Get current membership information"""
        return {
            "membership_status": profile.membership_status,
            "membership_plan": profile.membership_plan,
            "membership_expires": profile.membership_expires,
            "is_active": profile.has_active_membership,
        }
