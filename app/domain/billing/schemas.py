"""Billing domain schemas - Pydantic models for validation"""

import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

# PayPal subscription ids look like I-BW452GLLEP1G
SUBSCRIPTION_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


class CamelModel(BaseModel):
    """Accepts both camelCase (browser) and snake_case field names"""

    model_config = ConfigDict(populate_by_name=True)


class CreateSubscriptionRequest(CamelModel):
    """Schema for starting a PayPal subscription"""

    user_email: Optional[EmailStr] = Field(default=None, alias="userEmail")
    user_name: Optional[str] = Field(default=None, alias="userName")

    @field_validator("user_name")
    @classmethod
    def strip_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None


class CreateSubscriptionResponse(CamelModel):
    subscription_id: str = Field(alias="subscriptionId")
    approval_url: str = Field(alias="approvalUrl")
    status: Optional[str] = None


class CheckActivateRequest(CamelModel):
    """Schema for the post-approval activation check"""

    subscription_id: str = Field(alias="subscriptionId")

    @field_validator("subscription_id")
    @classmethod
    def validate_subscription_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("subscriptionId is required")
        if not re.match(SUBSCRIPTION_ID_PATTERN, v):
            raise ValueError("subscriptionId has an invalid format")
        return v


class CheckActivateResponse(BaseModel):
    success: bool
    activated: Optional[bool] = None
    status: Optional[str] = None
    message: str


class CancelSubscriptionRequest(BaseModel):
    """Schema for canceling subscription"""

    reason: Optional[str] = Field(default=None, max_length=127)


class CancelSubscriptionResponse(BaseModel):
    success: bool
    message: str


class SubscriptionStatusResponse(BaseModel):
    """Provider status passthrough"""

    id: str
    status: Optional[str] = None
    plan_id: Optional[str] = None
    next_billing_time: Optional[str] = None


class MembershipResponse(BaseModel):
    """Schema for current membership response"""

    membership_status: str
    membership_plan: Optional[str] = None
    membership_expires: Optional[datetime] = None
    is_active: bool
