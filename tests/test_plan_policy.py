"""
Tests for plan policy: tier table, operation costs and subscription state
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from infinite_pages.db.models import Story
from infinite_pages.exceptions import InfinitePagesError, PlanLimitExceededError
from infinite_pages.services.plan_policy import (
    PlanPolicy,
    get_operation_cost,
    apply_cache_discount,
    calculate_proportional_credits,
    get_creator_tier,
    credits_to_usd,
    get_tier_config,
)


class TestOperationCosts:
    """Test the AI operation cost table"""

    @pytest.mark.parametrize("operation,complexity,expected", [
        ("foundation", "basic", 8),
        ("foundation", "high", 18),
        ("character", "medium", 8),
        ("chapter", "basic", 10),
        ("chapter", "medium", 15),
        ("chapter", "high", 25),
        ("improvement", "medium", 6),
        ("analysis", "high", 10),
    ])
    def test_known_costs(self, operation, complexity, expected):
        assert get_operation_cost(operation, complexity) == expected

    def test_unknown_operation(self):
        with pytest.raises(InfinitePagesError) as exc_info:
            get_operation_cost("cover_art", "medium")
        assert exc_info.value.code == "INVALID_OPERATION"

    def test_unknown_complexity(self):
        with pytest.raises(InfinitePagesError) as exc_info:
            get_operation_cost("chapter", "extreme")
        assert exc_info.value.code == "INVALID_COMPLEXITY"

    def test_cache_discount_charges_forty_percent_rounded_up(self):
        assert apply_cache_discount(15) == 6
        assert apply_cache_discount(8) == 4
        assert apply_cache_discount(10) == 4


class TestCreditMath:
    """Test monthly allowance and creator tier helpers"""

    def test_proportional_credits_bonus(self):
        assert calculate_proportional_credits("basic", 0) == 500
        assert calculate_proportional_credits("basic", 3) == 530

    def test_proportional_credits_bonus_capped_at_twenty_percent(self):
        assert calculate_proportional_credits("basic", 50) == 600
        assert calculate_proportional_credits("premium", 100) == 1440

    def test_unknown_tier_falls_back_to_basic(self):
        assert get_tier_config("gold")["monthly_credits"] == 500

    @pytest.mark.parametrize("earnings,tier", [
        (0, "bronze"),
        (Decimal("99.99"), "bronze"),
        (100, "silver"),
        (Decimal("500.00"), "gold"),
        (2500, "platinum"),
        (None, "bronze"),
    ])
    def test_creator_tier(self, earnings, tier):
        assert get_creator_tier(earnings) == tier

    def test_credits_to_usd(self):
        assert credits_to_usd(350) == Decimal("3.50")


class TestPlanPolicy:
    """Test per-user tier enforcement"""

    def test_active_and_past_due_count_as_subscribed(self, db_session, make_user):
        assert PlanPolicy(db_session, make_user(subscription_status="active")).has_active_subscription()
        assert PlanPolicy(db_session, make_user(subscription_status="past_due")).has_active_subscription()
        assert not PlanPolicy(db_session, make_user(subscription_status="canceled")).has_active_subscription()

    def test_trial_expiry(self, db_session, make_user):
        running = make_user(subscription_status="trialing", trial_ends_at=datetime.utcnow() + timedelta(days=2))
        expired = make_user(subscription_status="trialing", trial_ends_at=datetime.utcnow() - timedelta(days=1))

        assert PlanPolicy(db_session, running).has_active_subscription()
        assert not PlanPolicy(db_session, expired).has_active_subscription()

    def test_basic_story_limit(self, db_session, make_user):
        user = make_user()
        for i in range(10):
            db_session.add(Story(user_id=user.id, title=f"Story {i}", genre="fantasy", premise="A premise long enough"))
        db_session.commit()

        with pytest.raises(PlanLimitExceededError) as exc_info:
            PlanPolicy(db_session, user).check_story_limit()
        assert exc_info.value.details == {"limit": 10, "used": 10, "tier": "basic"}

    def test_premium_has_no_story_limit(self, db_session, make_user):
        user = make_user(subscription_tier="premium")
        for i in range(12):
            db_session.add(Story(user_id=user.id, title=f"Story {i}", genre="fantasy", premise="A premise long enough"))
        db_session.commit()

        PlanPolicy(db_session, user).check_story_limit()

    def test_feature_access(self, db_session, make_user):
        basic = PlanPolicy(db_session, make_user())
        premium = PlanPolicy(db_session, make_user(subscription_tier="premium"))
        lapsed = PlanPolicy(db_session, make_user(subscription_tier="premium", subscription_status="canceled"))

        assert not basic.can_access("download")
        assert premium.can_access("download")
        assert not lapsed.can_access("download")

    def test_max_credit_balance(self, db_session, make_user):
        assert PlanPolicy(db_session, make_user()).max_credit_balance() == 1500
        assert PlanPolicy(db_session, make_user(subscription_tier="premium")).max_credit_balance() is None
