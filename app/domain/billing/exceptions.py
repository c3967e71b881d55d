"""Billing domain errors"""

from typing import Optional


class BillingError(Exception):
    """Base class for billing failures"""

    pass


class AuthError(BillingError):
    """PayPal rejected the client-credentials exchange"""

    pass


class PayPalAPIError(BillingError):
    """PayPal returned a non-2xx response"""

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class SubscriptionNotFoundError(PayPalAPIError):
    pass


class SubscriptionCreateError(PayPalAPIError):
    """Creation rejected or no approval link returned"""

    pass


class OwnershipMismatch(BillingError):
    """Caller is not the owner recorded on the PayPal subscription"""

    def __init__(self, subscription_id: str):
        super().__init__(f"Subscription {subscription_id} does not belong to this user")
        self.subscription_id = subscription_id
