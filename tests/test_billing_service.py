"""
Tests for subscription billing: checkout, portal and subscription webhooks
"""
import json
from datetime import datetime

import pytest

from infinite_pages.db.models import BillingEvent
from infinite_pages.exceptions import InfinitePagesError, NotFoundError
from infinite_pages.services.billing_service import BillingService, ensure_customer


def subscription_event(event_id, event_type, obj):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


class TestCheckout:
    """Test checkout and portal sessions"""

    def test_checkout_creates_customer_once(self, db_session, make_user, gateway):
        user = make_user()
        service = BillingService(db_session, gateway)

        first = service.create_checkout(user, "premium", "monthly")
        service.create_checkout(user, "premium", "yearly")

        assert first["url"].startswith("https://checkout.stripe.test/")
        assert len(gateway.calls_to("create_customer")) == 1
        sessions = gateway.calls_to("create_checkout_session")
        assert sessions[0]["price_id"] == "price_premium_monthly"
        assert sessions[1]["price_id"] == "price_premium_yearly"
        assert sessions[0]["success_url"].endswith("/dashboard?upgraded=true")
        assert sessions[0]["metadata"] == {"user_id": str(user.id), "tier": "premium"}

    def test_invalid_tier(self, db_session, make_user, gateway):
        with pytest.raises(InfinitePagesError) as exc_info:
            BillingService(db_session, gateway).create_checkout(make_user(), "enterprise")
        assert exc_info.value.code == "INVALID_TIER"

    def test_invalid_interval(self, db_session, make_user, gateway):
        with pytest.raises(InfinitePagesError) as exc_info:
            BillingService(db_session, gateway).create_checkout(make_user(), "basic", "weekly")
        assert exc_info.value.code == "INVALID_INTERVAL"

    def test_portal_requires_customer(self, db_session, make_user, gateway):
        with pytest.raises(NotFoundError):
            BillingService(db_session, gateway).create_portal(make_user())

    def test_portal(self, db_session, make_user, gateway):
        user = make_user()
        ensure_customer(db_session, gateway, user)
        assert BillingService(db_session, gateway).create_portal(user)["url"].startswith("https://billing")

    def test_checkout_endpoint(self, client, make_user, auth_headers, gateway):
        user = make_user()
        response = client.post(
            "/api/billing/create-checkout",
            json={"tier": "Premium"},
            headers=auth_headers(user),
        )
        assert response.status_code == 200
        assert response.json()["session_id"].startswith("cs_test_")

    def test_checkout_endpoint_invalid_tier(self, client, make_user, auth_headers, gateway):
        response = client.post(
            "/api/billing/create-checkout",
            json={"tier": "gold"},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TIER"

    def test_subscription_endpoint(self, client, make_user, auth_headers):
        user = make_user(subscription_tier="premium", subscription_status="active")
        response = client.get("/api/billing/subscription", headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()
        assert data["tier"] == "premium"
        assert data["status"] == "active"
        assert data["has_billing_account"] is False


class TestSubscriptionEvents:
    """Test subscription webhook handling"""

    def test_checkout_completed_activates_tier(self, db_session, make_user, gateway):
        user = make_user(subscription_status="trialing")
        gateway.subscription["current_period_end"] = datetime(2030, 1, 1)

        result = BillingService(db_session, gateway).handle_subscription_event(subscription_event(
            "evt_1",
            "checkout.session.completed",
            {
                "id": "cs_1",
                "customer": "cus_abc",
                "subscription": "sub_abc",
                "metadata": {"user_id": str(user.id), "tier": "premium"},
            },
        ))

        db_session.refresh(user)
        assert result == {"processed": True, "event_type": "checkout.session.completed"}
        assert user.subscription_tier == "premium"
        assert user.subscription_status == "active"
        assert user.stripe_subscription_id == "sub_abc"
        assert user.stripe_customer_id == "cus_abc"
        assert user.current_period_end == datetime(2030, 1, 1)

    def test_subscription_updated_maps_status_and_tier(self, db_session, make_user, gateway):
        user = make_user(stripe_customer_id="cus_upd")

        BillingService(db_session, gateway).handle_subscription_event(subscription_event(
            "evt_2",
            "customer.subscription.updated",
            {
                "id": "sub_upd",
                "customer": "cus_upd",
                "status": "unpaid",
                "current_period_end": 1893456000,
                "items": {"data": [{"price": {"id": "price_premium_yearly"}}]},
            },
        ))

        db_session.refresh(user)
        assert user.subscription_status == "past_due"
        assert user.subscription_tier == "premium"
        assert user.current_period_end == datetime.utcfromtimestamp(1893456000)

    def test_subscription_deleted(self, db_session, make_user, gateway):
        user = make_user(stripe_customer_id="cus_del", current_period_end=datetime(2030, 1, 1))

        BillingService(db_session, gateway).handle_subscription_event(subscription_event(
            "evt_3", "customer.subscription.deleted", {"id": "sub_del", "customer": "cus_del"}
        ))

        db_session.refresh(user)
        assert user.subscription_status == "canceled"
        assert user.current_period_end is None

    def test_duplicate_event_ignored(self, db_session, make_user, gateway):
        user = make_user(stripe_customer_id="cus_dup")
        service = BillingService(db_session, gateway)
        event = subscription_event("evt_dup", "customer.subscription.deleted", {"customer": "cus_dup"})

        assert service.handle_subscription_event(event)["processed"] is True
        second = service.handle_subscription_event(event)

        assert second["processed"] is False
        assert second["reason"] == "duplicate"
        assert db_session.query(BillingEvent).count() == 1

    def test_unknown_user(self, db_session, gateway):
        result = BillingService(db_session, gateway).handle_subscription_event(subscription_event(
            "evt_4", "customer.subscription.deleted", {"customer": "cus_nobody"}
        ))
        assert result["processed"] is False

    def test_event_without_id_rejected(self, db_session, gateway):
        with pytest.raises(InfinitePagesError) as exc_info:
            BillingService(db_session, gateway).handle_subscription_event({"type": "customer.subscription.deleted"})
        assert exc_info.value.code == "INVALID_WEBHOOK"


class TestSubscriptionWebhookEndpoint:
    """Test POST /api/billing/webhook"""

    def test_missing_signature(self, client, gateway):
        response = client.post("/api/billing/webhook", content="{}")
        assert response.status_code == 400

    def test_invalid_signature(self, client, gateway, sign_webhook):
        payload = json.dumps({"id": "evt_x", "type": "customer.subscription.deleted", "data": {"object": {}}})
        response = client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload, secret="whsec_wrong")},
        )
        assert response.status_code == 400
        assert "signature" in response.json()["message"].lower()

    def test_signed_event_processed(self, client, db_session, make_user, gateway, sign_webhook):
        user = make_user(stripe_customer_id="cus_hook")
        payload = json.dumps(subscription_event(
            "evt_hook", "customer.subscription.deleted", {"id": "sub_hook", "customer": "cus_hook"}
        ))

        response = client.post(
            "/api/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": sign_webhook(payload)},
        )

        assert response.status_code == 200
        assert response.json() == {"received": True, "processed": True}
        db_session.refresh(user)
        assert user.subscription_status == "canceled"
