"""
Tests for the credit ledger, balance endpoint and credit packages
"""
from decimal import Decimal

import pytest

from infinite_pages.db.models import CreditPackage, CreditTransaction, Payment, TransactionType
from infinite_pages.exceptions import InsufficientCreditsError, InfinitePagesError
from infinite_pages.services.credit_service import CreditService


@pytest.fixture
def packages(db_session):
    rows = [
        CreditPackage(name="Starter Pack", credits_amount=100, price_usd=Decimal("4.99"), bonus_credits=0, sort_order=1),
        CreditPackage(name="Author Pack", credits_amount=1200, price_usd=Decimal("39.99"), bonus_credits=300, sort_order=2),
        CreditPackage(name="Retired Pack", credits_amount=50, price_usd=Decimal("1.99"), is_active=False, sort_order=3),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


class TestCreditLedger:
    """Test balance changes and their ledger rows"""

    def test_spend_credits(self, db_session, make_user):
        user = make_user(credits_balance=100)
        transaction = CreditService(db_session).spend_credits(
            user, 15, "Chapter generation", reference_id=7, reference_type="story"
        )

        assert user.credits_balance == 85
        assert user.credits_spent_total == 15
        assert transaction.amount == -15
        assert transaction.balance_after == 85
        assert transaction.transaction_type == "spend"
        assert transaction.reference_id == "7"

    def test_spend_more_than_balance(self, db_session, make_user):
        user = make_user(credits_balance=10)
        with pytest.raises(InsufficientCreditsError) as exc_info:
            CreditService(db_session).spend_credits(user, 11, "Too expensive")

        assert exc_info.value.details == {"required": 11, "available": 10}
        assert exc_info.value.status_code == 402
        assert db_session.query(CreditTransaction).count() == 0

    def test_negative_amount_rejected(self, db_session, make_user):
        user = make_user()
        with pytest.raises(InfinitePagesError) as exc_info:
            CreditService(db_session).spend_credits(user, -5, "Negative")
        assert exc_info.value.code == "INVALID_AMOUNT"

    def test_add_credits(self, db_session, make_user):
        user = make_user(credits_balance=0)
        CreditService(db_session).add_credits(user, 50, TransactionType.PURCHASE, metadata={"package_id": 1})

        assert user.credits_balance == 50
        assert user.credits_earned_total == 50
        row = db_session.query(CreditTransaction).one()
        assert row.metadata_json == {"package_id": 1}

    def test_add_credits_not_counted_as_earned(self, db_session, make_user):
        user = make_user(credits_balance=0)
        CreditService(db_session).add_credits(user, 20, TransactionType.REFUND, count_as_earned=False)
        assert user.credits_earned_total == 0

    def test_deduct_credits_caps_at_balance(self, db_session, make_user):
        user = make_user(credits_balance=30)
        transaction = CreditService(db_session).deduct_credits(user, 100, TransactionType.CREDIT_REVERSION)

        assert user.credits_balance == 0
        assert transaction.amount == -30
        assert user.credits_spent_total == 0

    def test_balance_equals_sum_of_ledger(self, db_session, make_user):
        user = make_user(credits_balance=0)
        service = CreditService(db_session)
        service.add_credits(user, 100, TransactionType.BONUS)
        service.spend_credits(user, 40, "Spend")
        service.add_credits(user, 25, TransactionType.PURCHASE)

        total = sum(t.amount for t in db_session.query(CreditTransaction).filter_by(user_id=user.id))
        assert total == user.credits_balance == 85

    def test_monthly_spending(self, db_session, make_user):
        user = make_user(credits_balance=100)
        service = CreditService(db_session)
        service.spend_credits(user, 10, "a")
        service.spend_credits(user, 5, "b")
        assert service.monthly_spending(user) == 15


class TestBalanceEndpoint:
    """Test GET /api/credits/balance"""

    def test_requires_auth(self, client):
        response = client.get("/api/credits/balance")
        assert response.status_code == 401

    def test_balance_summary(self, client, db_session, make_user, auth_headers):
        user = make_user(credits_balance=0)
        service = CreditService(db_session)
        service.add_credits(user, 120, TransactionType.PURCHASE)
        service.spend_credits(user, 20, "Generation")

        response = client.get("/api/credits/balance", headers=auth_headers(user))

        assert response.status_code == 200
        data = response.json()
        assert data["balance"] == {
            "current": 100,
            "lifetime_earned": 120,
            "lifetime_spent": 20,
            "net_balance": 100,
        }
        assert data["analytics"]["monthly_spending"] == 20
        assert data["meta"]["subscription_tier"] == "basic"
        assert "transactions" not in data

    def test_include_transactions(self, client, db_session, make_user, auth_headers):
        user = make_user(credits_balance=50)
        service = CreditService(db_session)
        for i in range(3):
            service.spend_credits(user, 1, f"Spend {i}")

        response = client.get(
            "/api/credits/balance",
            params={"include_transactions": "true", "limit": 2},
            headers=auth_headers(user),
        )

        transactions = response.json()["transactions"]
        assert len(transactions) == 2
        assert transactions[0]["description"] == "Spend 2"
        assert transactions[0]["balance_after"] == 47


class TestPackages:
    """Test credit package listing and purchase"""

    def test_list_packages(self, client, packages):
        response = client.get("/api/credits/packages")

        assert response.status_code == 200
        listed = response.json()["packages"]
        assert [p["name"] for p in listed] == ["Starter Pack", "Author Pack"]

        author = listed[1]
        assert author["total_credits"] == 1500
        assert author["bonus_percentage"] == 25
        assert author["is_best_value"] is True
        assert author["price_per_credit"] == round(39.99 / 1500, 4)
        assert listed[0]["is_best_value"] is False

    def test_purchase_creates_pending_payment(self, client, db_session, packages, make_user, auth_headers, gateway):
        user = make_user()
        response = client.post(
            "/api/credits/purchase",
            json={"package_id": packages[1].id},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["payment_intent_id"].startswith("pi_test_")
        assert data["client_secret"]

        payment = db_session.query(Payment).one()
        assert payment.status == "pending"
        assert payment.credits_purchased == 1200
        assert payment.bonus_credits == 300
        assert gateway.calls_to("create_payment_intent")[0]["amount_cents"] == 3999

    def test_purchase_inactive_package(self, client, packages, make_user, auth_headers, gateway):
        user = make_user()
        response = client.post(
            "/api/credits/purchase",
            json={"package_id": packages[2].id},
            headers=auth_headers(user),
        )
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"
