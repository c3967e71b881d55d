from datetime import datetime, timedelta, timezone

import pytest

from app import webhook_security
from app.domain.billing.repository import BillingRepository
from app.domain.billing.webhooks import PayPalWebhookProcessor
from app.models import PayPalWebhookEvent, Profile, Subscription

NOW = datetime(2026, 1, 1, 12, 0, 0)


def fixed_clock():
    return NOW


def activated_event(event_id="WH-1", subscription_id="I-ABC", owner="u1", next_billing_time="2026-02-01T00:00:00Z"):
    return {
        "id": event_id,
        "event_type": "BILLING.SUBSCRIPTION.ACTIVATED",
        "resource": {
            "id": subscription_id,
            "status": "ACTIVE",
            "custom_id": owner,
            "plan_id": "P-1",
            "billing_info": {"next_billing_time": next_billing_time},
        },
    }


def signed_headers(sent_at=None):
    sent_at = sent_at or datetime.now(timezone.utc)
    return {
        "paypal-transmission-id": "tx-1",
        "paypal-transmission-time": sent_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
        "paypal-cert-url": "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-1",
        "paypal-auth-algo": "SHA256withRSA",
        "paypal-transmission-sig": "c2lnbmF0dXJl",
    }


@pytest.fixture
def processor(db_session, fake_paypal):
    return PayPalWebhookProcessor(db_session, fake_paypal, clock=fixed_clock)


@pytest.fixture
def active_member(processor, db_session):
    processor.process(activated_event())
    return db_session.get(Subscription, "I-ABC")


def test_activated_event_upgrades_owner(processor, db_session):
    assert processor.process(activated_event()) == {"received": True}

    profile = db_session.get(Profile, "u1")
    assert profile.membership_status == "pro"
    assert profile.membership_expires == datetime(2026, 2, 1)
    assert db_session.get(PayPalWebhookEvent, "WH-1").event_type == "BILLING.SUBSCRIPTION.ACTIVATED"


def test_redelivered_event_is_deduped(processor, db_session):
    processor.process(activated_event())

    assert processor.process(activated_event()) == {"received": True, "deduped": True}
    assert db_session.query(Subscription).count() == 1


def test_webhook_and_poller_converge_on_one_activation(processor, db_session):
    processor.process(activated_event(event_id="WH-1"))
    # A different delivery for the same subscription
    processor.process(activated_event(event_id="WH-2"))

    assert db_session.query(Subscription).count() == 1


def test_payment_completed_renews_membership(processor, db_session, active_member):
    processor.process(
        {
            "id": "WH-PAY",
            "event_type": "PAYMENT.SALE.COMPLETED",
            "resource": {"id": "SALE-1", "billing_agreement_id": "I-ABC", "state": "completed"},
        }
    )

    db_session.expire_all()
    subscription = db_session.get(Subscription, "I-ABC")
    assert subscription.status == "ACTIVE"
    assert subscription.current_period_start == NOW
    assert subscription.current_period_end == NOW + timedelta(days=30)
    profile = db_session.get(Profile, "u1")
    assert profile.membership_status == "pro"
    assert profile.membership_expires == NOW + timedelta(days=30)


def test_payment_for_unknown_subscription_is_acknowledged(processor):
    result = processor.process(
        {
            "id": "WH-PAY",
            "event_type": "PAYMENT.SALE.COMPLETED",
            "resource": {"id": "SALE-1", "billing_agreement_id": "I-UNKNOWN"},
        }
    )
    assert result == {"received": True}


def test_cancelled_keeps_access(processor, db_session, active_member):
    processor.process(
        {"id": "WH-C", "event_type": "BILLING.SUBSCRIPTION.CANCELLED", "resource": {"id": "I-ABC", "status": "CANCELLED"}}
    )

    db_session.expire_all()
    assert db_session.get(Subscription, "I-ABC").status == "CANCELLED"
    profile = db_session.get(Profile, "u1")
    assert profile.membership_status == "pro"
    assert profile.membership_expires == datetime(2026, 2, 1)


@pytest.mark.parametrize("event_type,status", [
    ("BILLING.SUBSCRIPTION.SUSPENDED", "SUSPENDED"),
    ("BILLING.SUBSCRIPTION.EXPIRED", "EXPIRED"),
])
def test_suspended_or_expired_downgrades(processor, db_session, active_member, event_type, status):
    processor.process({"id": "WH-E", "event_type": event_type, "resource": {"id": "I-ABC", "status": status}})

    db_session.expire_all()
    assert db_session.get(Subscription, "I-ABC").status == status
    profile = db_session.get(Profile, "u1")
    assert profile.membership_status == "free"
    assert profile.membership_plan is None
    assert profile.membership_expires is None


def test_reactivation_after_suspension_restores_pro(processor, db_session, active_member):
    processor.process(
        {"id": "WH-2", "event_type": "BILLING.SUBSCRIPTION.SUSPENDED", "resource": {"id": "I-ABC", "status": "SUSPENDED"}}
    )
    assert db_session.get(Profile, "u1").membership_status == "free"

    processor.process(activated_event(event_id="WH-3", next_billing_time="2026-03-01T00:00:00Z"))

    db_session.expire_all()
    profile = db_session.get(Profile, "u1")
    assert profile.membership_status == "pro"
    assert profile.membership_plan == "pro-monthly"
    assert profile.membership_expires == datetime(2026, 3, 1)
    row = db_session.get(Subscription, "I-ABC")
    assert row.status == "ACTIVE"
    assert row.current_period_end == datetime(2026, 3, 1)
    assert db_session.query(Subscription).count() == 1


def test_unhandled_event_type_is_acknowledged(processor, db_session):
    result = processor.process({"id": "WH-X", "event_type": "CUSTOMER.DISPUTE.CREATED", "resource": {}})

    assert result == {"received": True}
    assert BillingRepository.webhook_event_seen(db_session, "WH-X")


def test_transmission_time_window():
    now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert webhook_security.verify_transmission_time("2026-01-01T11:58:00Z", now=now)
    assert not webhook_security.verify_transmission_time("2026-01-01T11:50:00Z", now=now)
    assert not webhook_security.verify_transmission_time("yesterday-ish", now=now)
    assert not webhook_security.verify_transmission_time(None, now=now)


def test_route_verifies_and_activates(client, fake_paypal, db_session, monkeypatch):
    monkeypatch.setattr(webhook_security, "PAYPAL_WEBHOOK_ID", "WH-CONFIGURED")

    response = client.post(
        "/webhooks/paypal",
        json=activated_event(next_billing_time="2099-01-01T00:00:00Z"),
        headers=signed_headers(),
    )

    assert response.status_code == 200
    assert response.json() == {"received": True}
    verified = fake_paypal.verified[0]
    assert verified["webhook_id"] == "WH-CONFIGURED"
    assert verified["headers"]["paypal-transmission-id"] == "tx-1"
    assert db_session.get(Profile, "u1").membership_status == "pro"


def test_route_rejects_invalid_signature(client, fake_paypal, db_session, monkeypatch):
    monkeypatch.setattr(webhook_security, "PAYPAL_WEBHOOK_ID", "WH-CONFIGURED")
    fake_paypal.signature_valid = False

    response = client.post("/webhooks/paypal", json=activated_event(), headers=signed_headers())

    assert response.status_code == 401
    assert db_session.query(Subscription).count() == 0


def test_route_rejects_stale_delivery(client, fake_paypal, monkeypatch):
    monkeypatch.setattr(webhook_security, "PAYPAL_WEBHOOK_ID", "WH-CONFIGURED")
    stale = datetime.now(timezone.utc) - timedelta(minutes=10)

    response = client.post("/webhooks/paypal", json=activated_event(), headers=signed_headers(stale))

    assert response.status_code == 401
    assert fake_paypal.calls["verify_webhook_signature"] == 0


def test_route_without_webhook_id_is_refused(client, fake_paypal, monkeypatch):
    monkeypatch.setattr(webhook_security, "PAYPAL_WEBHOOK_ID", "")
    monkeypatch.setattr(webhook_security, "APP_ENV", "production")
    monkeypatch.setattr(webhook_security, "PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS", True)

    response = client.post("/webhooks/paypal", json=activated_event(), headers=signed_headers())

    assert response.status_code == 500


def test_route_unverified_allowed_only_in_development(client, db_session, monkeypatch):
    monkeypatch.setattr(webhook_security, "PAYPAL_WEBHOOK_ID", "")
    monkeypatch.setattr(webhook_security, "APP_ENV", "development")
    monkeypatch.setattr(webhook_security, "PAYPAL_ALLOW_UNVERIFIED_WEBHOOKS", True)

    response = client.post("/webhooks/paypal", json=activated_event(next_billing_time="2099-01-01T00:00:00Z"))

    assert response.status_code == 200
    assert db_session.get(Subscription, "I-ABC") is not None


def test_route_rejects_malformed_payload(client):
    response = client.post(
        "/webhooks/paypal", content=b"not json", headers={"Content-Type": "application/json"}
    )
    assert response.status_code == 400
