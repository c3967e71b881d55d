import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns below"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MembershipStatus(str, enum.Enum):
    FREE = "free"
    DEMO = "demo"
    PRO = "pro"


class Profile(Base):
    __tablename__ = "profiles"

    # Supabase auth.users.id
    id = Column(String(36), primary_key=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    membership_status = Column(
        String(20), default=MembershipStatus.FREE.value, nullable=False
    )  # free, demo, pro
    membership_plan = Column(String(50), nullable=True)  # pro-monthly
    membership_expires = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    subscriptions = relationship("Subscription", back_populates="profile")

    @property
    def has_active_membership(self) -> bool:
        """Pro and not yet past its expiry"""
        return (
            self.membership_status == MembershipStatus.PRO.value
            and self.membership_expires is not None
            and self.membership_expires > utcnow()
        )


class Subscription(Base):
    __tablename__ = "subscriptions"

    # PayPal subscription id (I-XXXX); the row's existence marks activation
    id = Column(String(64), primary_key=True)
    user_id = Column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False)  # ACTIVE, CANCELLED, SUSPENDED, EXPIRED
    plan_id = Column(String(64), nullable=True)
    plan_name = Column(String(50), nullable=True)
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    start_time = Column(DateTime, nullable=True)
    next_billing_time = Column(DateTime, nullable=True)
    amount = Column(String(20), nullable=True)  # decimal string as sent by PayPal
    currency = Column(String(3), nullable=True)
    is_trial = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    profile = relationship("Profile", back_populates="subscriptions")


class PayPalWebhookEvent(Base):
    """Delivered webhook ids, used to drop PayPal redeliveries"""

    __tablename__ = "paypal_webhook_events"

    id = Column(String(64), primary_key=True)
    event_type = Column(String(100), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
