"""
Webhook Security Module

Verification for PayPal webhook deliveries:
- Transmission time validation (rejects replays of old deliveries)
- Signature verification through PayPal's verify-webhook-signature API
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from dateutil import parser as date_parser
from fastapi import HTTPException, Request

from .config import APP_ENV, PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS, PAYPAL_WEBHOOK_ID
from .domain.billing.paypal_service import PayPalService

logger = logging.getLogger(__name__)

# Maximum age of webhook in seconds (5 minutes)
MAX_WEBHOOK_AGE_SECONDS = 300

PAYPAL_SIGNATURE_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-cert-url",
    "paypal-auth-algo",
    "paypal-transmission-sig",
)


def verify_transmission_time(
    transmission_time: Optional[str],
    max_age: int = MAX_WEBHOOK_AGE_SECONDS,
    now: Optional[datetime] = None,
) -> bool:
    """
    Verify the paypal-transmission-time header is within acceptable range.

    Args:
        transmission_time: RFC 3339 timestamp sent by PayPal
        max_age: Maximum age in seconds

    Returns:
        True if timestamp is valid, False otherwise
    """
    if not transmission_time:
        logger.warning("🚫 Missing paypal-transmission-time header")
        return False

    try:
        sent_at = date_parser.isoparse(transmission_time)
    except (ValueError, TypeError):
        logger.warning(f"🚫 Invalid webhook timestamp format: {transmission_time}")
        return False

    if sent_at.tzinfo is None:
        sent_at = sent_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    age = abs((now - sent_at).total_seconds())
    if age > max_age:
        logger.warning(f"🚫 Webhook timestamp too old: {int(age)}s (max: {max_age}s)")
        return False
    return True


def unverified_webhooks_allowed() -> bool:
    """Skipping verification is a development-only escape hatch"""
    return APP_ENV == "development" and PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS


async def verify_paypal_webhook(
    request: Request,
    event: dict,
    paypal: PayPalService,
    webhook_id: Optional[str] = None,
    allow_unverified: Optional[bool] = None,
) -> None:
    """
    Verify a PayPal webhook delivery, raising HTTPException on failure.

    Without a configured webhook id deliveries are refused (500) unless
    unverified webhooks are explicitly allowed in development.
    """
    if webhook_id is None:
        webhook_id = PAYPAL_WEBHOOK_ID
    if allow_unverified is None:
        allow_unverified = unverified_webhooks_allowed()

    if not webhook_id:
        if allow_unverified:
            logger.warning("⚠️ PAYPAL_WEBHOOK_ID not set - accepting UNVERIFIED webhook (development only)")
            return
        logger.error("❌ PAYPAL_WEBHOOK_ID not configured - rejecting webhook")
        raise HTTPException(status_code=500, detail="Webhook verification not configured")

    headers = {name: request.headers.get(name) for name in PAYPAL_SIGNATURE_HEADERS}

    if not verify_transmission_time(headers["paypal-transmission-time"]):
        raise HTTPException(status_code=401, detail="Webhook timestamp expired")

    if not await paypal.verify_webhook_signature(headers, event, webhook_id):
        logger.error(f"❌ PayPal webhook signature invalid: transmission={headers['paypal-transmission-id']}")
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    logger.info(f"✅ PayPal webhook signature verified: {headers['paypal-transmission-id']}")
