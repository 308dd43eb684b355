"""
Tests for monthly credit distribution and excess credit reversion
"""
from datetime import datetime

import pytest

from infinite_pages.db.models import CreditTransaction, StoryPurchase, SystemLog
from infinite_pages.exceptions import InfinitePagesError, PayoutError
from infinite_pages.services.maintenance_service import MaintenanceService, previous_month


class TestPreviousMonth:
    """Test the previous_month helper"""

    def test_mid_year(self):
        assert previous_month(datetime(2024, 6, 1)) == (5, 2024)

    def test_january(self):
        assert previous_month(datetime(2024, 1, 1)) == (12, 2023)


class TestDistribution:
    """Test monthly credit distribution"""

    def test_distributes_by_tier(self, db_session, make_user):
        basic = make_user(credits_balance=0)
        premium = make_user(subscription_tier="premium", subscription_status="trialing", credits_balance=0)
        make_user(subscription_status="canceled")
        make_user(is_active=False)

        result = MaintenanceService(db_session).distribute_monthly_credits(month=5, year=2024)

        assert result["total_users"] == 2
        assert result["total_credits"] == 1700
        assert result["by_tier"] == {
            "basic": {"users": 1, "credits": 500},
            "premium": {"users": 1, "credits": 1200},
        }
        db_session.refresh(basic)
        db_session.refresh(premium)
        assert basic.credits_balance == 500
        assert premium.credits_balance == 1200

        ledger = db_session.query(CreditTransaction).filter_by(user_id=basic.id).one()
        assert ledger.transaction_type == "monthly_distribution"
        assert ledger.reference_id == "2024-05"
        assert ledger.metadata_json["bonus_credits"] == 0

    def test_activity_bonus(self, db_session, make_user, make_story):
        author = make_user(subscription_status="canceled")
        reader = make_user(credits_balance=0)
        for _ in range(3):
            story = make_story(author, published=True)
            db_session.add(StoryPurchase(
                user_id=reader.id, story_id=story.id, creator_id=author.id,
                purchase_type="chapter", chapters_unlocked=[1],
                created_at=datetime(2024, 5, 10),
            ))
        db_session.commit()

        result = MaintenanceService(db_session).distribute_monthly_credits(month=5, year=2024)

        assert result["distributions"][0]["stories_read"] == 3
        assert result["distributions"][0]["credits"] == 530

    def test_dry_run_changes_nothing(self, db_session, make_user):
        user = make_user(credits_balance=10)

        result = MaintenanceService(db_session).distribute_monthly_credits(month=5, year=2024, dry_run=True)

        assert result["dry_run"] is True
        assert result["total_credits"] == 500
        db_session.refresh(user)
        assert user.credits_balance == 10
        assert db_session.query(CreditTransaction).count() == 0

    def test_month_distributed_once(self, db_session, make_user):
        make_user()
        service = MaintenanceService(db_session)
        service.distribute_monthly_credits(month=5, year=2024)

        with pytest.raises(PayoutError) as exc_info:
            service.distribute_monthly_credits(month=5, year=2024)
        assert exc_info.value.code == "ALREADY_DISTRIBUTED"

        # A dry run of a distributed month is still allowed
        assert service.distribute_monthly_credits(month=5, year=2024, dry_run=True)["total_users"] == 1

    def test_invalid_month(self, db_session):
        with pytest.raises(InfinitePagesError) as exc_info:
            MaintenanceService(db_session).distribute_monthly_credits(month=13, year=2024)
        assert exc_info.value.code == "INVALID_MONTH"

    def test_distribution_history(self, db_session, make_user):
        make_user()
        make_user()
        service = MaintenanceService(db_session)
        service.distribute_monthly_credits(month=4, year=2024)
        service.distribute_monthly_credits(month=5, year=2024)

        history = service.distribution_history()

        assert [entry["period"] for entry in history] == ["2024-05", "2024-04"]
        assert history[0]["users"] == 2
        assert history[0]["total_credits"] == 1000


class TestReversion:
    """Test capping Basic balances"""

    def test_reverts_basic_only(self, db_session, make_user):
        basic = make_user(credits_balance=1800)
        capped = make_user(credits_balance=1500)
        premium = make_user(subscription_tier="premium", credits_balance=5000)

        result = MaintenanceService(db_session).revert_excess_credits()

        assert result["users_affected"] == 1
        assert result["total_credits_reverted"] == 300
        for user in (basic, capped, premium):
            db_session.refresh(user)
        assert basic.credits_balance == 1500
        assert capped.credits_balance == 1500
        assert premium.credits_balance == 5000

        history = MaintenanceService(db_session).reversion_history()
        assert history["summary"]["total_reversions"] == 1
        assert history["reversions"][0]["credits_reverted"] == 300
        assert history["reversions"][0]["metadata"]["previous_balance"] == 1800

    def test_dry_run(self, db_session, make_user):
        user = make_user(credits_balance=2000)
        result = MaintenanceService(db_session).revert_excess_credits(dry_run=True)

        assert result["details"] == [{"user_id": user.id, "excess_credits": 500}]
        db_session.refresh(user)
        assert user.credits_balance == 2000


class TestMonthlyMaintenance:
    """Test the combined maintenance run"""

    def test_runs_both_tasks_and_logs(self, db_session, make_user):
        make_user(credits_balance=1400)

        result = MaintenanceService(db_session).run_monthly_maintenance(month=5, year=2024)

        assert result["success"] is True
        assert result["distribution"]["total_credits"] == 500
        assert result["reversion"]["total_credits_reverted"] == 400

        log = db_session.query(SystemLog).one()
        assert log.log_type == "monthly_maintenance"
        assert log.details["distributed_users"] == 1
        assert log.details["reverted_credits"] == 400

    def test_distribution_failure_does_not_stop_reversion(self, db_session, make_user):
        make_user(credits_balance=1400)
        service = MaintenanceService(db_session)
        service.distribute_monthly_credits(month=5, year=2024)

        result = service.run_monthly_maintenance(month=5, year=2024)

        assert result["success"] is False
        assert result["errors"][0]["task"] == "distribution"
        assert result["reversion"]["users_affected"] == 1

        history = service.maintenance_history()
        assert history[0]["details"]["errors"][0]["task"] == "distribution"
