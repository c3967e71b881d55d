"""Billing repository - Database operations for billing"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import MembershipStatus, PayPalWebhookEvent, Profile, Subscription

logger = logging.getLogger(__name__)

PRO_MEMBERSHIP_PLAN = "pro-monthly"


class BillingRepository:
    """Repository for billing database operations"""

    @staticmethod
    def get_profile(db: Session, user_id: str) -> Optional[Profile]:
        """Get profile by auth user id"""
        return db.query(Profile).filter(Profile.id == user_id).first()

    @staticmethod
    def get_or_create_profile(
        db: Session, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> Profile:
        """Get profile, creating a free one on first sight of the user"""
        profile = BillingRepository.get_profile(db, user_id)
        if profile:
            return profile

        profile = Profile(
            id=user_id,
            email=email,
            full_name=full_name,
            membership_status=MembershipStatus.FREE.value,
        )
        db.add(profile)
        try:
            db.commit()
        except IntegrityError:
            # Created by a concurrent request
            db.rollback()
            return db.query(Profile).filter(Profile.id == user_id).one()
        db.refresh(profile)
        return profile

    @staticmethod
    def get_subscription(db: Session, subscription_id: str) -> Optional[Subscription]:
        """Get local subscription row by PayPal subscription id"""
        return db.query(Subscription).filter(Subscription.id == subscription_id).first()

    @staticmethod
    def update_profile(db: Session, user_id: str, **patch) -> Optional[Profile]:
        """Update profile fields; None values are written as given"""
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if not profile:
            return None
        for field, value in patch.items():
            setattr(profile, field, value)
        db.commit()
        db.refresh(profile)
        return profile

    @staticmethod
    def update_subscription(db: Session, subscription_id: str, **patch) -> Optional[Subscription]:
        subscription = db.query(Subscription).filter(Subscription.id == subscription_id).first()
        if not subscription:
            return None
        for field, value in patch.items():
            setattr(subscription, field, value)
        db.commit()
        db.refresh(subscription)
        return subscription

    @staticmethod
    def activate_membership(
        db: Session,
        user_id: str,
        subscription_id: str,
        expires_at: datetime,
        now: datetime,
        status: str,
        plan_id: Optional[str] = None,
        amount: Optional[str] = None,
        currency: Optional[str] = None,
        is_trial: bool = False,
    ) -> bool:
        """
        Flip the profile to pro and insert the subscription row in one transaction.

        Returns False when the row already exists (another activation won);
        in that case neither write is kept.
        """
        profile = db.query(Profile).filter(Profile.id == user_id).first()
        if profile is None:
            profile = Profile(id=user_id)
            db.add(profile)

        profile.membership_status = MembershipStatus.PRO.value
        profile.membership_plan = PRO_MEMBERSHIP_PLAN
        profile.membership_expires = expires_at

        db.add(
            Subscription(
                id=subscription_id,
                user_id=user_id,
                status=status,
                plan_id=plan_id,
                plan_name="pro",
                current_period_start=now,
                current_period_end=expires_at,
                start_time=now,
                next_billing_time=expires_at,
                amount=amount,
                currency=currency,
                is_trial=is_trial,
            )
        )

        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if db.query(Subscription).filter(Subscription.id == subscription_id).first() is None:
                raise
            logger.info(f"Subscription {subscription_id} already activated by a concurrent call")
            return False
        except Exception:
            db.rollback()
            raise
        return True

    @staticmethod
    def restore_membership(
        db: Session,
        subscription: Subscription,
        expires_at: datetime,
        status: str,
    ) -> None:
        """Bring an existing subscription and its owner back to pro in one transaction"""
        profile = db.query(Profile).filter(Profile.id == subscription.user_id).first()
        if profile is None:
            profile = Profile(id=subscription.user_id)
            db.add(profile)

        profile.membership_status = MembershipStatus.PRO.value
        profile.membership_plan = PRO_MEMBERSHIP_PLAN
        profile.membership_expires = expires_at

        subscription.status = status
        subscription.current_period_end = expires_at
        subscription.next_billing_time = expires_at

        try:
            db.commit()
        except Exception:
            db.rollback()
            raise

    @staticmethod
    def webhook_event_seen(db: Session, event_id: str) -> bool:
        return db.query(PayPalWebhookEvent).filter(PayPalWebhookEvent.id == event_id).first() is not None

    @staticmethod
    def record_webhook_event(db: Session, event_id: str, event_type: str) -> bool:
        """Store a delivered event id; False if it was already stored"""
        db.add(PayPalWebhookEvent(id=event_id, event_type=event_type))
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
        return True
