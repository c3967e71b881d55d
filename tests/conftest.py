import copy
import os
import sys
import time
from collections import Counter
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYPAL_CLIENT_ID", "test-client-id")
os.environ.setdefault("PAYPAL_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("PAYPAL_WEBHOOK_ID", "WH-TEST")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("FRONTEND_URL", "https://bookinggen.test")
os.environ["REDIS_URL"] = ""

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import models  # noqa: F401
from app import rate_limiter
from app.config import SUPABASE_JWT_SECRET
from app.database import Base
from app.domain.billing.exceptions import (
    AuthError,
    PayPalAPIError,
    SubscriptionCreateError,
    SubscriptionNotFoundError,
)
from app.domain.billing.paypal_service import PRO_PLAN_NAME


class FakePayPal:
    """In-memory stand-in for PayPalService"""

    def __init__(self):
        self.subscriptions = {}
        self.plans = []
        self.calls = Counter()
        self.created = []
        self.cancelled = []
        self.next_subscription_ids = []
        self.available = True
        self.signature_valid = True
        self.verified = []
        self.fail_token = False
        self.fail_list = False
        self.fail_create = False

    def is_available(self):
        return self.available

    async def get_access_token(self):
        self.calls["get_access_token"] += 1
        if self.fail_token:
            raise AuthError("PayPal authentication failed")
        return "A21-test-token"

    async def list_plans(self, access_token):
        self.calls["list_plans"] += 1
        if self.fail_list:
            raise PayPalAPIError("Failed to list plans", status_code=500)
        return list(self.plans)

    async def create_product(self, access_token):
        self.calls["create_product"] += 1
        return f"PROD-{self.calls['create_product']}"

    async def create_plan(self, access_token, product_id):
        self.calls["create_plan"] += 1
        plan_id = f"P-{len(self.plans) + 1}"
        self.plans.append({"id": plan_id, "name": PRO_PLAN_NAME, "product_id": product_id})
        return plan_id

    async def create_subscription(self, user_id, email, name, plan_id):
        await self.get_access_token()
        self.calls["create_subscription"] += 1
        if self.fail_create:
            raise SubscriptionCreateError("Failed to create subscription", status_code=422)

        if self.next_subscription_ids:
            subscription_id = self.next_subscription_ids.pop(0)
        else:
            subscription_id = f"I-{len(self.subscriptions) + 1:04d}"
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "status": "APPROVAL_PENDING",
            "plan_id": plan_id,
            "custom_id": user_id,
        }
        self.created.append({"user_id": user_id, "email": email, "name": name, "plan_id": plan_id})
        return {
            "subscription_id": subscription_id,
            "approval_url": f"https://www.sandbox.paypal.com/webapps/billing/subscriptions?ba_token=BA-{subscription_id}",
            "status": "APPROVAL_PENDING",
        }

    def add_subscription(self, subscription_id, owner, status="ACTIVE", next_billing_time=None, plan_id="P-1"):
        self.subscriptions[subscription_id] = {
            "id": subscription_id,
            "status": status,
            "plan_id": plan_id,
            "custom_id": owner,
        }
        if next_billing_time:
            self.subscriptions[subscription_id]["billing_info"] = {
                "next_billing_time": next_billing_time
            }
        return self.subscriptions[subscription_id]

    def approve(self, subscription_id, next_billing_time=None):
        """Buyer approved; PayPal moves the subscription to ACTIVE"""
        subscription = self.subscriptions[subscription_id]
        subscription["status"] = "ACTIVE"
        if next_billing_time:
            subscription["billing_info"] = {"next_billing_time": next_billing_time}

    async def get_subscription(self, subscription_id):
        await self.get_access_token()
        self.calls["get_subscription"] += 1
        if subscription_id not in self.subscriptions:
            raise SubscriptionNotFoundError(f"Subscription {subscription_id} not found", status_code=404)
        return copy.deepcopy(self.subscriptions[subscription_id])

    async def cancel_subscription(self, subscription_id, reason=None):
        await self.get_access_token()
        self.calls["cancel_subscription"] += 1
        self.cancelled.append((subscription_id, reason))
        self.subscriptions[subscription_id]["status"] = "CANCELLED"

    async def verify_webhook_signature(self, headers, event, webhook_id):
        self.calls["verify_webhook_signature"] += 1
        self.verified.append({"headers": headers, "event": event, "webhook_id": webhook_id})
        return self.signature_valid


def make_token(user_id, email="owner@bookinggen.io", expires_in=3600, audience="authenticated"):
    now = int(time.time())
    claims = {
        "sub": user_id,
        "aud": audience,
        "email": email,
        "role": "authenticated",
        "iat": now,
        "exp": now + expires_in,
        "user_metadata": {"full_name": "Test Owner"},
    }
    return jwt.encode(claims, SUPABASE_JWT_SECRET, algorithm="HS256")


def bearer(user_id, **kwargs):
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def fake_paypal():
    return FakePayPal()


@pytest.fixture
def client(db_session, fake_paypal):
    from app.database import get_db
    from app.domain.billing.plan_provisioner import PlanProvisioner
    from app.domain.billing.router import get_paypal_service, get_plan_provisioner
    from app.main import app

    provisioner = PlanProvisioner(fake_paypal)
    rate_limiter.memory_cache.clear()

    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_paypal_service] = lambda: fake_paypal
    app.dependency_overrides[get_plan_provisioner] = lambda: provisioner
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
