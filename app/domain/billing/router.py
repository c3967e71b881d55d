"""Billing router - FastAPI endpoints for PayPal subscriptions"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...config import (
    CHECK_ACTIVATE_RATE_LIMIT,
    CHECK_ACTIVATE_RATE_WINDOW_SECONDS,
)
from ...database import get_db
from ...models import Profile
from ...rate_limiter import check_rate_limit, create_rate_limiter
from .paypal_service import PayPalService, paypal_service
from .plan_provisioner import PlanProvisioner, plan_provisioner
from .schemas import (
    SUBSCRIPTION_ID_PATTERN,
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    CheckActivateRequest,
    CheckActivateResponse,
    CreateSubscriptionRequest,
    CreateSubscriptionResponse,
    MembershipResponse,
    SubscriptionStatusResponse,
)
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["Subscriptions"])

limit_create = create_rate_limiter(limit=10, window_seconds=60, key_prefix="subscription_create")


def get_paypal_service() -> PayPalService:
    return paypal_service


def get_plan_provisioner() -> PlanProvisioner:
    return plan_provisioner


def get_subscription_service(
    db: Session = Depends(get_db),
    paypal: PayPalService = Depends(get_paypal_service),
    provisioner: PlanProvisioner = Depends(get_plan_provisioner),
) -> SubscriptionService:
    """Dependency injection for SubscriptionService"""
    return SubscriptionService(db, paypal, provisioner)


async def limit_check_activate(profile: Profile = Depends(get_current_user)) -> None:
    """Per-user limit on the browser's activation polling"""
    key = f"check_activate:{profile.id}"
    is_allowed, current_count, ttl = check_rate_limit(
        key, CHECK_ACTIVATE_RATE_LIMIT, CHECK_ACTIVATE_RATE_WINDOW_SECONDS
    )
    if not is_allowed:
        logger.warning(f"🚫 Rate limit EXCEEDED for {key} - {current_count}/{CHECK_ACTIVATE_RATE_LIMIT}")
        raise HTTPException(
            status_code=429,
            detail="Too many activation checks. Please wait and try again.",
            headers={"Retry-After": str(ttl)},
        )


# ============================================================================
# SUBSCRIPTION LIFECYCLE
# ============================================================================


@router.post(
    "",
    response_model=CreateSubscriptionResponse,
    dependencies=[Depends(limit_create)],
)
async def create_subscription(
    body: CreateSubscriptionRequest,
    profile: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Create a PayPal subscription and return the buyer approval URL"""
    return await service.create_subscription(body, profile)


@router.post(
    "/check-activate",
    response_model=CheckActivateResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(limit_check_activate)],
)
async def check_and_activate(
    body: CheckActivateRequest,
    profile: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Activate Pro once PayPal reports the subscription active (polling fallback)"""
    return await service.check_and_activate(body.subscription_id, profile)


@router.get("/membership", response_model=MembershipResponse)
async def get_membership(
    profile: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Get current membership information"""
    return service.get_membership(profile)


@router.get("/{subscription_id}", response_model=SubscriptionStatusResponse)
async def get_subscription(
    subscription_id: str = Path(pattern=SUBSCRIPTION_ID_PATTERN),
    profile: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Get PayPal subscription status"""
    return await service.get_subscription(subscription_id, profile)


@router.post("/{subscription_id}/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    subscription_id: str = Path(pattern=SUBSCRIPTION_ID_PATTERN),
    body: Optional[CancelSubscriptionRequest] = None,
    profile: Profile = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Cancel subscription"""
    return await service.cancel_subscription(subscription_id, profile, body.reason if body else None)
