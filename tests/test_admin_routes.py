"""
Tests for the admin API endpoints
"""
import pytest
from decimal import Decimal

from infinite_pages.db.models import CreatorEarning
from infinite_pages.services.llm_cache import get_llm_cache

ADMIN_GETS = [
    "/api/admin/distribute-credits",
    "/api/admin/revert-excess-credits",
    "/api/admin/monthly-maintenance",
    "/api/admin/process-payouts",
    "/api/admin/request-flow/stats",
    "/api/admin/request-flow/recent",
    "/api/admin/request-flow/health",
    "/api/admin/cache/analytics",
]


@pytest.fixture
def admin(make_user):
    return make_user(is_admin=True, credits_balance=0)


class TestAdminAccess:
    """Admin endpoints reject everyone else"""

    @pytest.mark.parametrize("path", ADMIN_GETS)
    def test_non_admin_forbidden(self, client, make_user, auth_headers, path):
        response = client.get(path, headers=auth_headers(make_user()))

        assert response.status_code == 403
        body = response.json()
        assert body["code"] == "FORBIDDEN"
        assert body["message"] == "Admin access required"

    def test_anonymous_unauthorized(self, client, db_session):
        response = client.post("/api/admin/cache/clear")
        assert response.status_code == 401


class TestCreditMaintenanceEndpoints:
    """Test distribution, reversion and maintenance endpoints"""

    def test_distribute_credits(self, client, admin, make_user, auth_headers):
        make_user(credits_balance=0)

        response = client.post(
            "/api/admin/distribute-credits",
            json={"month": 5, "year": 2024},
            headers=auth_headers(admin),
        )

        assert response.status_code == 200
        assert response.json()["total_users"] == 2

        history = client.get("/api/admin/distribute-credits", headers=auth_headers(admin)).json()
        assert history["distribution_history"][0]["period"] == "2024-05"

    def test_distribute_twice_is_400(self, client, admin, auth_headers):
        body = {"month": 5, "year": 2024}
        client.post("/api/admin/distribute-credits", json=body, headers=auth_headers(admin))

        response = client.post("/api/admin/distribute-credits", json=body, headers=auth_headers(admin))

        assert response.status_code == 400
        assert response.json()["code"] == "ALREADY_DISTRIBUTED"

    def test_invalid_month_rejected(self, client, admin, auth_headers):
        response = client.post(
            "/api/admin/distribute-credits",
            json={"month": 13},
            headers=auth_headers(admin),
        )
        assert response.status_code == 422

    def test_revert_excess_credits(self, client, admin, make_user, auth_headers):
        make_user(credits_balance=1600)

        dry = client.post(
            "/api/admin/revert-excess-credits", json={"dry_run": True}, headers=auth_headers(admin)
        ).json()
        assert dry["total_credits_reverted"] == 100

        client.post("/api/admin/revert-excess-credits", json={}, headers=auth_headers(admin))
        history = client.get("/api/admin/revert-excess-credits", headers=auth_headers(admin)).json()
        assert history["summary"]["total_credits_reverted"] == 100

    def test_monthly_maintenance(self, client, admin, auth_headers):
        response = client.post(
            "/api/admin/monthly-maintenance",
            json={"month": 4, "year": 2024},
            headers=auth_headers(admin),
        )
        assert response.json()["success"] is True

        history = client.get("/api/admin/monthly-maintenance", headers=auth_headers(admin)).json()
        assert history["summary"]["total_executions"] == 1
        assert history["summary"]["successful_executions"] == 1
        assert history["summary"]["last_execution"] is not None


class TestPayoutEndpoints:
    """Test payout batch endpoints"""

    def test_process_payouts(self, client, db_session, admin, make_user, auth_headers, gateway):
        creator = make_user(
            is_creator=True,
            pending_payout_usd=Decimal("12.00"),
            stripe_connect_account_id="acct_admin_test",
            stripe_charges_enabled=True,
            stripe_payouts_enabled=True,
        )
        db_session.add(CreatorEarning(creator_id=creator.id, usd_equivalent=Decimal("12.00"), credits_earned=0))
        db_session.commit()

        dry = client.post(
            "/api/admin/process-payouts",
            json={"dry_run": True, "minimum_payout": 10},
            headers=auth_headers(admin),
        ).json()
        assert dry["total_creators"] == 1
        assert dry["minimum_payout"] == 10.0

        response = client.post(
            "/api/admin/process-payouts",
            json={"batch_date": "2024-06-01", "minimum_payout": 10},
            headers=auth_headers(admin),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert gateway.calls_to("create_transfer")[0]["amount_cents"] == 1175

        batches = client.get("/api/admin/process-payouts", headers=auth_headers(admin)).json()["batches"]
        assert batches[0]["batch_date"] == "2024-06-01"


class TestRequestFlowEndpoints:
    """Test the request-flow dashboard"""

    def _log(self, client, request_id, success=True, point="story_generation"):
        return client.post("/api/request-tracking/log", json={
            "requestId": request_id,
            "sessionId": "session-1",
            "frontendAction": "generate_story",
            "frontendComponent": "StoryCreator",
            "apiEndpoint": "/api/stories",
            "httpMethod": "post",
            "responseStatus": 201 if success else 500,
            "responseTimeMs": 120,
            "successFlag": success,
            "integrationPoint": point,
            "errorMessage": None if success else "Generation failed",
            "errorCategory": None if success else "server_error",
        })

    def test_stats_recent_and_health(self, client, admin, auth_headers):
        self._log(client, "req-1")
        self._log(client, "req-2")
        self._log(client, "req-3", success=False)
        self._log(client, "req-4", point="billing")

        stats = client.get("/api/admin/request-flow/stats", headers=auth_headers(admin)).json()
        assert stats["total_requests"] == 4
        assert stats["success_rate"] == 75.0
        assert stats["errors_by_category"] == {"server_error": 1}
        assert stats["top_endpoints"][0] == {"endpoint": "/api/stories", "count": 4, "avg_response_time_ms": 120.0}

        recent = client.get(
            "/api/admin/request-flow/recent",
            params={"limit": 2, "offset": 1},
            headers=auth_headers(admin),
        ).json()
        assert recent["limit"] == 2
        assert [r["request_id"] for r in recent["requests"]] == ["req-3", "req-2"]

        health = client.get("/api/admin/request-flow/health", headers=auth_headers(admin)).json()
        by_point = {entry["integration_point"]: entry for entry in health["integrations"]}
        assert by_point["billing"]["success_rate"] == 100.0
        assert by_point["story_generation"]["success_rate"] == 66.67
        assert by_point["story_generation"]["recent_errors"][0]["request_id"] == "req-3"


class TestCacheEndpoints:
    """Test LLM cache analytics and clearing"""

    def test_analytics_and_clear(self, client, admin, auth_headers):
        cache = get_llm_cache()
        cache.set("abc123", "cached chapter", cost_usd=0.02, operation="chapter")
        cache.get("abc123")

        analytics = client.get("/api/admin/cache/analytics", headers=auth_headers(admin)).json()
        assert analytics["size"] == 1
        assert analytics["hits"] == 1
        assert analytics["top_entries"][0]["operation"] == "chapter"

        cleared = client.post("/api/admin/cache/clear", headers=auth_headers(admin)).json()
        assert cleared == {"cleared": 1, "message": "LLM cache cleared"}
        assert cache.get_stats()["size"] == 0
