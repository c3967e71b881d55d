"""PayPal service - Integration with the PayPal REST API"""

import base64
import logging
import uuid
from typing import Any, Optional

import httpx

from ...config import (
    FRONTEND_URL,
    PAYPAL_CLIENT_ID,
    PAYPAL_CLIENT_SECRET,
    PAYPAL_ENVIRONMENT,
)
from .exceptions import (
    AuthError,
    PayPalAPIError,
    SubscriptionCreateError,
    SubscriptionNotFoundError,
)

logger = logging.getLogger(__name__)

PAYPAL_LIVE_API_URL = "https://api-m.paypal.com"
PAYPAL_SANDBOX_API_URL = "https://api-m.sandbox.paypal.com"

PRO_PRODUCT_NAME = "BookingGen Pro"
PRO_PLAN_NAME = "BookingGen Pro Monthly"
PRO_PLAN_PRICE = "14.99"
PRO_PLAN_CURRENCY = "USD"

HTTP_TIMEOUT_SECONDS = 30.0


def normalize_paypal_environment(env: Optional[str]) -> str:
    """Normalize PayPal environment value to 'live' or 'sandbox'"""
    value = (env or "sandbox").strip().lower()
    if value in {"live", "production", "prod"}:
        return "live"
    if value in {"sandbox", "test", "staging", "dev", "development"}:
        return "sandbox"
    logger.warning(f"Unknown PAYPAL environment '{env}', defaulting to sandbox")
    return "sandbox"


def find_approval_url(links: Optional[list]) -> Optional[str]:
    for link in links or []:
        if link.get("rel") == "approve":
            return link.get("href")
    return None


class PayPalService:
    """Service for PayPal subscription API operations"""

    def __init__(
        self,
        client_id: Optional[str] = PAYPAL_CLIENT_ID,
        client_secret: Optional[str] = PAYPAL_CLIENT_SECRET,
        environment: Optional[str] = PAYPAL_ENVIRONMENT,
        frontend_url: str = FRONTEND_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.environment = normalize_paypal_environment(environment)
        self.base_url = (
            PAYPAL_LIVE_API_URL if self.environment == "live" else PAYPAL_SANDBOX_API_URL
        )
        self.frontend_url = frontend_url.rstrip("/")
        self._transport = transport

        if not self.is_available():
            logger.warning(
                "PAYPAL_CLIENT_ID/PAYPAL_CLIENT_SECRET not set; billing endpoints will fail until configured"
            )
        else:
            logger.info(f"PayPal service initialized (env={self.environment})")

    def is_available(self) -> bool:
        """Check if PayPal credentials are configured"""
        return bool(self.client_id and self.client_secret)

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url, timeout=HTTP_TIMEOUT_SECONDS, transport=self._transport
        )

    @staticmethod
    def _bearer_headers(access_token: str, request_id: Optional[str] = None) -> dict:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }
        if request_id:
            headers["PayPal-Request-Id"] = request_id
        return headers

    async def get_access_token(self) -> str:
        """Exchange client credentials for a bearer token (not cached)"""
        if not self.is_available():
            raise AuthError("PayPal credentials not configured")

        auth = base64.b64encode(f"{self.client_id}:{self.client_secret}".encode()).decode()
        try:
            async with self._http_client() as client:
                response = await client.post(
                    "/v1/oauth2/token",
                    headers={
                        "Authorization": f"Basic {auth}",
                        "Content-Type": "application/x-www-form-urlencoded",
                    },
                    content="grant_type=client_credentials",
                )
        except httpx.HTTPError as e:
            logger.error(f"❌ PayPal token request failed: {e}")
            raise AuthError("PayPal authentication failed") from e

        if not response.is_success:
            logger.error(
                f"❌ PayPal token request rejected: HTTP {response.status_code} {response.text}"
            )
            raise AuthError(f"Failed to get access token: HTTP {response.status_code}")

        access_token = response.json().get("access_token")
        if not access_token:
            raise AuthError("PayPal token response missing access_token")
        return access_token

    async def create_product(self, access_token: str) -> str:
        """Create the catalog product the Pro plan hangs off"""
        try:
            async with self._http_client() as client:
                response = await client.post(
                    "/v1/catalogs/products",
                    headers=self._bearer_headers(access_token, f"PRODUCT-{uuid.uuid4()}"),
                    json={
                        "name": PRO_PRODUCT_NAME,
                        "description": "Professional booking page solution with unlimited features",
                        "type": "SERVICE",
                        "category": "SOFTWARE",
                    },
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal product request failed: {e}")
            raise PayPalAPIError("Failed to create product") from e

        if not response.is_success:
            logger.error(f"Failed to create PayPal product: {response.text}")
            raise PayPalAPIError(
                "Failed to create product", status_code=response.status_code, detail=response.text
            )

        product_id = response.json()["id"]
        logger.info(f"Created PayPal product: {product_id}")
        return product_id

    async def create_plan(self, access_token: str, product_id: str) -> str:
        """Create the monthly Pro billing plan"""
        plan_body = {
            "product_id": product_id,
            "name": PRO_PLAN_NAME,
            "description": "Monthly subscription for BookingGen Pro with all features unlocked",
            "billing_cycles": [
                {
                    "frequency": {"interval_unit": "MONTH", "interval_count": 1},
                    "tenure_type": "REGULAR",
                    "sequence": 1,
                    "total_cycles": 0,  # 0 means infinite
                    "pricing_scheme": {
                        "fixed_price": {"value": PRO_PLAN_PRICE, "currency_code": PRO_PLAN_CURRENCY}
                    },
                }
            ],
            "payment_preferences": {
                "auto_bill_outstanding": True,
                "setup_fee": {"value": "0", "currency_code": PRO_PLAN_CURRENCY},
                "setup_fee_failure_action": "CONTINUE",
                "payment_failure_threshold": 3,
            },
        }

        try:
            async with self._http_client() as client:
                response = await client.post(
                    "/v1/billing/plans",
                    headers=self._bearer_headers(access_token, f"PLAN-{uuid.uuid4()}"),
                    json=plan_body,
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal plan request failed: {e}")
            raise PayPalAPIError("Failed to create plan") from e

        if not response.is_success:
            logger.error(f"Failed to create PayPal plan: {response.text}")
            raise PayPalAPIError(
                "Failed to create plan", status_code=response.status_code, detail=response.text
            )

        plan_id = response.json()["id"]
        logger.info(f"Created PayPal billing plan: {plan_id}")
        return plan_id

    async def list_plans(self, access_token: str) -> list[dict]:
        """List billing plans (first page)"""
        try:
            async with self._http_client() as client:
                response = await client.get(
                    "/v1/billing/plans",
                    params={"page_size": 20, "total_required": "true"},
                    headers=self._bearer_headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal plan listing failed: {e}")
            raise PayPalAPIError("Failed to list plans") from e

        if not response.is_success:
            logger.error(f"Failed to list PayPal plans: {response.text}")
            raise PayPalAPIError(
                "Failed to list plans", status_code=response.status_code, detail=response.text
            )

        return response.json().get("plans") or []

    async def create_subscription(
        self, user_id: str, email: str, name: Optional[str], plan_id: str
    ) -> dict:
        """
        Create a subscription awaiting buyer approval.

        The user id travels as custom_id so webhook and polling paths can
        recover the owner from PayPal itself.
        """
        access_token = await self.get_access_token()

        body = {
            "plan_id": plan_id,
            "subscriber": {
                "name": {"given_name": name or "User"},
                "email_address": email,
            },
            "application_context": {
                "brand_name": "BookingGen",
                "locale": "en-US",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "SUBSCRIBE_NOW",
                "payment_method": {
                    "payer_selected": "PAYPAL",
                    "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
                },
                "return_url": f"{self.frontend_url}/dashboard?paypal_success=true",
                "cancel_url": f"{self.frontend_url}/dashboard?paypal_canceled=true",
            },
            "custom_id": user_id,
        }

        try:
            async with self._http_client() as client:
                response = await client.post(
                    "/v1/billing/subscriptions",
                    headers=self._bearer_headers(access_token, f"SUB-{uuid.uuid4()}"),
                    json=body,
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal subscription request failed for user {user_id}: {e}")
            raise SubscriptionCreateError("Failed to create subscription") from e

        if not response.is_success:
            logger.error(
                f"PayPal subscription creation failed for user {user_id}: "
                f"HTTP {response.status_code} {response.text}"
            )
            raise SubscriptionCreateError(
                "Failed to create subscription",
                status_code=response.status_code,
                detail=response.text,
            )

        data = response.json()
        approval_url = find_approval_url(data.get("links"))
        if not approval_url:
            logger.error(f"No approval URL returned from PayPal for subscription {data.get('id')}")
            raise SubscriptionCreateError("No approval URL returned from PayPal")

        logger.info(f"Created PayPal subscription {data.get('id')} for user {user_id}")
        return {
            "subscription_id": data.get("id"),
            "approval_url": approval_url,
            "status": data.get("status"),
        }

    async def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Get subscription details"""
        access_token = await self.get_access_token()

        try:
            async with self._http_client() as client:
                response = await client.get(
                    f"/v1/billing/subscriptions/{subscription_id}",
                    headers=self._bearer_headers(access_token),
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal request failed for subscription {subscription_id}: {e}")
            raise PayPalAPIError("Failed to get subscription") from e

        if response.status_code == 404:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found", status_code=404, detail=response.text
            )
        if not response.is_success:
            logger.error(f"Failed to get subscription {subscription_id}: {response.text}")
            raise PayPalAPIError(
                "Failed to get subscription", status_code=response.status_code, detail=response.text
            )

        return response.json()

    async def cancel_subscription(self, subscription_id: str, reason: Optional[str] = None) -> None:
        """Cancel a subscription"""
        access_token = await self.get_access_token()

        try:
            async with self._http_client() as client:
                response = await client.post(
                    f"/v1/billing/subscriptions/{subscription_id}/cancel",
                    headers=self._bearer_headers(access_token),
                    json={"reason": reason or "Customer requested cancellation"},
                )
        except httpx.HTTPError as e:
            logger.error(f"PayPal cancel request failed for {subscription_id}: {e}")
            raise PayPalAPIError("Failed to cancel subscription") from e

        if not response.is_success:
            logger.error(f"Failed to cancel subscription {subscription_id}: {response.text}")
            raise PayPalAPIError(
                "Failed to cancel subscription",
                status_code=response.status_code,
                detail=response.text,
            )

    async def verify_webhook_signature(
        self, headers: dict, event: dict, webhook_id: str
    ) -> bool:
        """Ask PayPal whether a webhook delivery carries a valid signature"""
        try:
            access_token = await self.get_access_token()
            async with self._http_client() as client:
                response = await client.post(
                    "/v1/notifications/verify-webhook-signature",
                    headers=self._bearer_headers(access_token),
                    json={
                        "transmission_id": headers.get("paypal-transmission-id"),
                        "transmission_time": headers.get("paypal-transmission-time"),
                        "cert_url": headers.get("paypal-cert-url"),
                        "auth_algo": headers.get("paypal-auth-algo"),
                        "transmission_sig": headers.get("paypal-transmission-sig"),
                        "webhook_id": webhook_id,
                        "webhook_event": event,
                    },
                )
        except (AuthError, httpx.HTTPError) as e:
            logger.error(f"Webhook verification error: {e}")
            return False

        if not response.is_success:
            logger.error(f"Webhook verification failed: {response.text}")
            return False

        return response.json().get("verification_status") == "SUCCESS"


# Singleton instance
paypal_service = PayPalService()
