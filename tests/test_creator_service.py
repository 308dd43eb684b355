"""
Tests for creator earnings, payouts and Stripe Connect onboarding
"""
from datetime import datetime
from decimal import Decimal

import pytest

from infinite_pages.db.models import CreatorEarning, Payout
from infinite_pages.exceptions import InfinitePagesError, PayoutError, SubscriptionRequiredError
from infinite_pages.services.creator_service import CreatorService, period_bounds, record_creator_earning


def add_earnings(db_session, creator, story, amounts, reader_ids=None):
    reader_ids = reader_ids or [None] * len(amounts)
    for amount, reader_id in zip(amounts, reader_ids):
        record_creator_earning(
            db_session, creator, Decimal(amount),
            story_id=story.id if story else None,
            reader_id=reader_id,
            credits_earned=int(Decimal(amount) * 100),
        )
    db_session.commit()


def ready_creator(make_user, **overrides):
    values = {
        "is_creator": True,
        "subscription_tier": "premium",
        "stripe_connect_account_id": "acct_ready",
        "stripe_account_status": "active",
        "stripe_charges_enabled": True,
        "stripe_payouts_enabled": True,
    }
    values.update(overrides)
    return make_user(**values)


class TestPeriods:
    """Test earnings period resolution"""

    def test_named_periods(self):
        now = datetime(2024, 3, 15, 12, 0)
        assert period_bounds("current_month", now) == (datetime(2024, 3, 1), None)
        assert period_bounds("last_month", now) == (datetime(2024, 2, 1), datetime(2024, 3, 1))
        assert period_bounds("last_3_months", now) == (datetime(2024, 1, 1), None)
        assert period_bounds("all_time", now) == (None, None)

    def test_month_rollover(self):
        assert period_bounds("last_month", datetime(2024, 1, 10)) == (datetime(2023, 12, 1), datetime(2024, 1, 1))

    def test_day_periods(self):
        start, end = period_bounds("30", datetime(2024, 3, 31))
        assert start == datetime(2024, 3, 1)
        assert end is None

    def test_invalid_period(self):
        with pytest.raises(InfinitePagesError) as exc_info:
            period_bounds("fortnight")
        assert exc_info.value.code == "INVALID_PERIOD"


class TestEarnings:
    """Test the earnings dashboard"""

    def test_record_earning_updates_tier(self, db_session, make_user):
        creator = make_user(is_creator=True, total_earnings_usd=Decimal("95.00"))
        record_creator_earning(db_session, creator, Decimal("10.00"))
        db_session.commit()

        assert creator.pending_payout_usd == Decimal("10.00")
        assert creator.creator_tier == "silver"

    def test_earnings_summary(self, db_session, make_user, make_story):
        creator = make_user(is_creator=True)
        reader_a = make_user()
        reader_b = make_user()
        story = make_story(creator, published=True)
        add_earnings(db_session, creator, story, ["0.07", "0.14", "0.35"], [reader_a.id, reader_b.id, reader_a.id])

        result = CreatorService(db_session).get_earnings(creator, include_transactions=True, include_trends=True)

        summary = result["summary"]
        assert summary["total_credits_earned"] == 56
        assert summary["total_usd_earned"] == 0.56
        assert summary["unique_readers"] == 2
        assert summary["pending_payout"] == 0.56
        assert summary["creator_tier"] == "bronze"
        assert result["story_performance"][0]["purchases"] == 3
        assert result["story_performance"][0]["unique_readers"] == 2
        assert len(result["recent_transactions"]) == 3
        assert len(result["monthly_trends"]) == 6
        assert result["monthly_trends"][-1]["purchases"] == 3
        assert result["payout_info"]["eligible_for_payout"] is False

    def test_earnings_endpoint_requires_creator(self, client, make_user, auth_headers):
        response = client.get("/api/creators/earnings", headers=auth_headers(make_user()))
        assert response.status_code == 403
        assert response.json()["code"] == "CREATOR_REQUIRED"

    def test_earnings_endpoint_invalid_period(self, client, make_user, auth_headers):
        response = client.get(
            "/api/creators/earnings",
            params={"period": "decade"},
            headers=auth_headers(make_user(is_creator=True)),
        )
        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "INVALID_PERIOD"
        assert "all_time" in body["details"]["allowed"]

    def test_earnings_endpoint(self, client, db_session, make_user, make_story, auth_headers):
        creator = make_user(is_creator=True)
        add_earnings(db_session, creator, make_story(creator, published=True), ["1.00"])

        response = client.get("/api/creators/earnings", params={"period": "all_time"}, headers=auth_headers(creator))

        assert response.status_code == 200
        assert response.json()["summary"]["total_usd_earned"] == 1.0


class TestPayouts:
    """Test on-demand payouts"""

    def test_below_minimum(self, db_session, make_user, gateway):
        creator = ready_creator(make_user, pending_payout_usd=Decimal("24.99"))
        with pytest.raises(PayoutError) as exc_info:
            CreatorService(db_session, gateway).request_payout(creator)

        assert exc_info.value.code == "BELOW_MINIMUM_PAYOUT"
        assert exc_info.value.details["minimum_required"] == 25.0

    def test_connect_account_required(self, db_session, make_user, gateway):
        creator = make_user(is_creator=True, pending_payout_usd=Decimal("30.00"))
        with pytest.raises(PayoutError) as exc_info:
            CreatorService(db_session, gateway).request_payout(creator)
        assert exc_info.value.code == "CONNECT_ACCOUNT_REQUIRED"

    def test_connect_setup_incomplete(self, db_session, make_user, gateway):
        creator = ready_creator(make_user, pending_payout_usd=Decimal("30.00"), stripe_payouts_enabled=False)
        with pytest.raises(PayoutError) as exc_info:
            CreatorService(db_session, gateway).request_payout(creator)
        assert exc_info.value.code == "CONNECT_SETUP_INCOMPLETE"

    def test_no_unpaid_earnings(self, db_session, make_user, gateway):
        creator = ready_creator(make_user, pending_payout_usd=Decimal("30.00"))
        with pytest.raises(PayoutError) as exc_info:
            CreatorService(db_session, gateway).request_payout(creator)
        assert exc_info.value.code == "NO_UNPAID_EARNINGS"

    def test_successful_payout(self, db_session, make_user, gateway):
        creator = ready_creator(make_user)
        add_earnings(db_session, creator, None, ["10.00", "15.50"])

        result = CreatorService(db_session, gateway).request_payout(creator)

        assert result["amount_usd"] == 25.5
        assert result["status"] == "processing"
        assert result["earnings_count"] == 2
        assert gateway.calls_to("create_transfer")[0]["amount_cents"] == 2550

        db_session.refresh(creator)
        assert creator.pending_payout_usd == Decimal("0.00")
        assert creator.total_earnings_usd == Decimal("25.50")
        assert all(e.payout_id == result["id"] for e in db_session.query(CreatorEarning))

    def test_payout_endpoints(self, client, db_session, make_user, auth_headers, gateway):
        creator = ready_creator(make_user)
        add_earnings(db_session, creator, None, ["30.00"])

        response = client.post("/api/creators/payout", headers=auth_headers(creator))
        assert response.status_code == 200

        history = client.get("/api/creators/payout", headers=auth_headers(creator)).json()
        assert len(history["payouts"]) == 1
        assert history["pending_payout"] == 0.0
        assert history["eligible_for_payout"] is False

    def test_payout_endpoint_error_shape(self, client, make_user, auth_headers, gateway):
        creator = ready_creator(make_user, pending_payout_usd=Decimal("5.00"))
        response = client.post("/api/creators/payout", headers=auth_headers(creator))

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "BELOW_MINIMUM_PAYOUT"
        assert body["details"]["current_amount"] == 5.0

    def test_queued_earnings_wait_for_minimum(self, db_session, make_user, gateway):
        creator = ready_creator(make_user)
        add_earnings(db_session, creator, None, ["5.00"])

        assert CreatorService(db_session, gateway).process_queued_earnings(creator) is None
        assert db_session.query(Payout).count() == 0


class TestConnectOnboarding:
    """Test Stripe Connect onboarding"""

    def test_requires_creator(self, db_session, make_user, gateway):
        user = make_user(subscription_tier="premium")
        with pytest.raises(InfinitePagesError) as exc_info:
            CreatorService(db_session, gateway).start_onboarding(user)
        assert exc_info.value.code == "CREATOR_REQUIRED"
        assert exc_info.value.status_code == 403

    def test_requires_premium(self, db_session, make_user, gateway):
        user = make_user(is_creator=True)
        with pytest.raises(SubscriptionRequiredError) as exc_info:
            CreatorService(db_session, gateway).start_onboarding(user)
        assert exc_info.value.details["required_tier"] == "premium"

    def test_start_onboarding(self, db_session, make_user, gateway):
        user = make_user(is_creator=True, subscription_tier="premium")

        result = CreatorService(db_session, gateway).start_onboarding(user, country="GB")

        assert result["status"] == "onboarding_started"
        assert result["onboarding_url"].startswith("https://connect.stripe.test/")
        assert gateway.calls_to("create_connect_account")[0]["country"] == "GB"
        db_session.refresh(user)
        assert user.stripe_connect_account_id == result["account_id"]
        assert user.stripe_account_status == "incomplete"

    def test_resume_incomplete_onboarding(self, db_session, make_user, gateway):
        user = make_user(is_creator=True, subscription_tier="premium", stripe_connect_account_id="acct_half")

        result = CreatorService(db_session, gateway).start_onboarding(user)

        assert result["status"] == "onboarding_incomplete"
        assert result["requirements"] == ["external_account"]
        assert gateway.calls_to("create_connect_account") == []

    def test_already_onboarded(self, db_session, make_user, gateway):
        user = make_user(is_creator=True, subscription_tier="premium", stripe_connect_account_id="acct_done")
        gateway.account = {
            "charges_enabled": True, "payouts_enabled": True, "details_submitted": True, "requirements": [],
        }

        result = CreatorService(db_session, gateway).start_onboarding(user)

        assert result["status"] == "already_onboarded"
        db_session.refresh(user)
        assert user.stripe_account_status == "active"

    @pytest.mark.parametrize("overrides,expected", [
        ({}, "not_creator"),
        ({"is_creator": True}, "subscription_required"),
        ({"is_creator": True, "subscription_tier": "premium"}, "not_onboarded"),
        ({"is_creator": True, "subscription_tier": "premium", "stripe_connect_account_id": "acct_s"}, "onboarding_incomplete"),
    ])
    def test_connect_status(self, db_session, make_user, gateway, overrides, expected):
        user = make_user(**overrides)
        assert CreatorService(db_session, gateway).get_connect_status(user)["status"] == expected

    def test_status_endpoint_active(self, client, make_user, auth_headers, gateway):
        user = make_user(is_creator=True, subscription_tier="premium", stripe_connect_account_id="acct_live")
        gateway.account = {
            "charges_enabled": True, "payouts_enabled": True, "details_submitted": True, "requirements": [],
        }

        data = client.get("/api/creators/stripe/status", headers=auth_headers(user)).json()

        assert data["status"] == "active"
        assert data["can_receive_payouts"] is True

    def test_refresh_requires_account(self, client, make_user, auth_headers, gateway):
        user = make_user(is_creator=True, subscription_tier="premium")
        response = client.post("/api/creators/stripe/refresh", headers=auth_headers(user))

        assert response.status_code == 400
        assert response.json()["code"] == "CONNECT_ACCOUNT_REQUIRED"

    def test_onboard_endpoint(self, client, make_user, auth_headers, gateway):
        user = make_user(is_creator=True, subscription_tier="premium")
        response = client.post("/api/creators/stripe/onboard", json={"country": "us"}, headers=auth_headers(user))

        assert response.status_code == 200
        assert response.json()["status"] == "onboarding_started"
        assert gateway.calls_to("create_connect_account")[0]["country"] == "US"
