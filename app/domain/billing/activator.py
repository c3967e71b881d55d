"""Subscription activation - the one place a profile becomes pro"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from dateutil import parser as date_parser
from sqlalchemy.orm import Session

from ...models import MembershipStatus, utcnow
from .exceptions import OwnershipMismatch
from .paypal_service import PRO_PLAN_CURRENCY, PRO_PLAN_PRICE, PayPalService
from .repository import BillingRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = {"ACTIVE", "APPROVED"}
FALLBACK_PERIOD = timedelta(days=30)


@dataclass
class ActivationResult:
    success: bool
    activated: bool
    message: str
    status: Optional[str] = None

    def to_response(self) -> dict:
        if not self.success:
            return {"success": False, "status": self.status, "message": self.message}
        return {"success": True, "activated": self.activated, "message": self.message}


def parse_paypal_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a PayPal RFC 3339 timestamp into naive UTC"""
    if not value:
        return None
    try:
        parsed = date_parser.isoparse(value)
    except (ValueError, TypeError):
        logger.warning(f"Unparsable PayPal timestamp: {value!r}")
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def membership_expiry(remote: dict, now: datetime) -> datetime:
    """next_billing_time when it is in the future, else now + 30 days"""
    next_billing = parse_paypal_time((remote.get("billing_info") or {}).get("next_billing_time"))
    if next_billing and next_billing > now:
        return next_billing
    return now + FALLBACK_PERIOD


class SubscriptionActivator:
    """
    Idempotent activation shared by the check-activate endpoint and the
    PayPal webhook. Safe to call any number of times per subscription id.
    """

    def __init__(
        self,
        db: Session,
        paypal: PayPalService,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.paypal = paypal
        self.repo = BillingRepository()
        self._clock = clock

    async def check_and_activate(self, subscription_id: str, user_id: str) -> ActivationResult:
        """Activate for an authenticated caller, verifying they own the subscription"""
        remote = await self.paypal.get_subscription(subscription_id)

        owner_id = remote.get("custom_id")
        if owner_id != user_id:
            logger.warning(
                f"🚫 User {user_id} tried to activate subscription {subscription_id} owned by {owner_id}"
            )
            raise OwnershipMismatch(subscription_id)

        return self._activate(subscription_id, owner_id, remote)

    def activate_from_webhook(self, resource: dict) -> ActivationResult:
        """Activate from a verified BILLING.SUBSCRIPTION.ACTIVATED resource"""
        subscription_id = resource.get("id")
        owner_id = resource.get("custom_id")
        if not subscription_id or not owner_id:
            logger.error(f"No userId found in subscription custom_id (subscription={subscription_id})")
            return ActivationResult(
                success=False,
                activated=False,
                status=resource.get("status"),
                message="Subscription has no owner",
            )
        return self._activate(subscription_id, owner_id, resource)

    def _activate(self, subscription_id: str, owner_id: str, remote: dict) -> ActivationResult:
        status = (remote.get("status") or "").upper()
        if status not in ACTIVE_STATUSES:
            logger.info(f"Subscription {subscription_id} not active yet (status={status})")
            return ActivationResult(
                success=False,
                activated=False,
                status=status,
                message="Subscription is not active yet",
            )

        now = self._clock()
        expires_at = membership_expiry(remote, now)

        existing = self.repo.get_subscription(self.db, subscription_id)
        if existing:
            profile = self.repo.get_profile(self.db, existing.user_id)
            is_pro = profile is not None and profile.membership_status == MembershipStatus.PRO.value
            if (existing.status or "").upper() in ACTIVE_STATUSES and is_pro:
                return ActivationResult(
                    success=True, activated=False, status=status, message="Subscription already activated"
                )

            # Suspended or expired locally while PayPal reports it active again
            self.repo.restore_membership(self.db, existing, expires_at=expires_at, status=status)
            logger.info(
                f"🔄 Restored Pro membership for user {existing.user_id} from subscription {subscription_id} "
                f"(expires {expires_at.isoformat()})"
            )
            return ActivationResult(
                success=True, activated=False, status=status, message="Membership restored"
            )

        activated = self.repo.activate_membership(
            self.db,
            user_id=owner_id,
            subscription_id=subscription_id,
            expires_at=expires_at,
            now=now,
            status=status,
            plan_id=remote.get("plan_id"),
            amount=PRO_PLAN_PRICE,
            currency=PRO_PLAN_CURRENCY,
        )
        if not activated:
            return ActivationResult(
                success=True, activated=False, status=status, message="Subscription already activated"
            )

        logger.info(
            f"✅ User {owner_id} upgraded to Pro via PayPal subscription {subscription_id} "
            f"(expires {expires_at.isoformat()})"
        )
        return ActivationResult(
            success=True, activated=True, status=status, message="Subscription activated"
        )
