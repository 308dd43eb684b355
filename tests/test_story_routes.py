"""
Tests for the story API endpoints
"""
import json

PREMISE = "A lighthouse keeper receives letters from a ship that sank a century ago."


class TestStoryEndpoints:
    """Test /api/stories"""

    def test_create_story(self, client, make_user, auth_headers, ai_service, ai_reply):
        user = make_user(credits_balance=50)
        ai_reply(json.dumps({"title": "Letters from the Deep", "setting": "A northern coast"}))

        response = client.post(
            "/api/stories",
            json={"genre": "mystery", "premise": PREMISE, "complexity": "basic"},
            headers=auth_headers(user),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["credits_used"] == 8
        assert data["remaining_credits"] == 42
        assert data["story"]["title"] == "Letters from the Deep"
        assert data["message"] == "Story created successfully"

    def test_create_story_requires_auth(self, client, ai_service):
        response = client.post("/api/stories", json={"genre": "mystery", "premise": PREMISE})
        assert response.status_code == 401
        assert response.json()["code"] == "AUTH_ERROR"

    def test_invalid_genre(self, client, make_user, auth_headers, ai_service):
        response = client.post(
            "/api/stories",
            json={"genre": "cookbook", "premise": PREMISE},
            headers=auth_headers(make_user()),
        )

        assert response.status_code == 400
        body = response.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert any("Genre" in error for error in body["details"]["errors"])

    def test_insufficient_credits_is_402(self, client, make_user, auth_headers, ai_service):
        response = client.post(
            "/api/stories",
            json={"genre": "mystery", "premise": PREMISE, "complexity": "high"},
            headers=auth_headers(make_user(credits_balance=1)),
        )

        assert response.status_code == 402
        body = response.json()
        assert body["code"] == "INSUFFICIENT_CREDITS"
        assert body["details"] == {"required": 18, "available": 1}

    def test_subscription_required_is_403(self, client, make_user, auth_headers, ai_service):
        response = client.post(
            "/api/stories",
            json={"genre": "mystery", "premise": PREMISE},
            headers=auth_headers(make_user(subscription_status="inactive")),
        )
        assert response.status_code == 403
        assert response.json()["code"] == "SUBSCRIPTION_REQUIRED"

    def test_list_and_get(self, client, make_user, make_story, auth_headers):
        user = make_user()
        story = make_story(user, chapters=2)

        listed = client.get("/api/stories", headers=auth_headers(user)).json()
        assert listed["total"] == 1
        assert listed["stories"][0]["chapters"][0]["title"] == "Chapter 1"
        assert "content" not in listed["stories"][0]["chapters"][0]

        detail = client.get(f"/api/stories/{story.id}", headers=auth_headers(user)).json()
        assert detail["story"]["chapters"][1]["content"] == "Chapter 2 text here."

    def test_get_other_users_story(self, client, make_user, make_story, auth_headers):
        story = make_story(make_user())
        response = client.get(f"/api/stories/{story.id}", headers=auth_headers(make_user()))
        assert response.status_code == 404

    def test_generate_chapter(self, client, make_user, make_story, auth_headers, ai_service, ai_reply):
        user = make_user(credits_balance=40)
        story = make_story(user, chapters=1)
        ai_reply("The Second Letter\nThe envelope was still damp.")

        response = client.post(
            f"/api/stories/{story.id}/chapters",
            json={"complexity": "high"},
            headers=auth_headers(user),
        )

        assert response.status_code == 201
        data = response.json()
        assert data["chapter"]["chapter_number"] == 2
        assert data["chapter"]["title"] == "The Second Letter"
        assert data["credits_used"] == 25

    def test_duplicate_chapter_is_409(self, client, make_user, make_story, auth_headers, ai_service):
        user = make_user()
        story = make_story(user, chapters=1)
        response = client.post(
            f"/api/stories/{story.id}/chapters",
            json={"chapter_number": 1},
            headers=auth_headers(user),
        )
        assert response.status_code == 409

    def test_publish_and_read(self, client, make_user, make_story, auth_headers):
        author = make_user()
        reader = make_user(credits_balance=20)
        story = make_story(author, chapters=2)

        published = client.post(
            f"/api/stories/{story.id}/publish",
            json={"price_per_chapter": 4},
            headers=auth_headers(author),
        )
        assert published.status_code == 200
        assert published.json()["story"]["pricing"]["price_per_chapter"] == 4

        response = client.post(
            f"/api/stories/{story.id}/read",
            json={"chapter_numbers": [1, 2]},
            headers=auth_headers(reader),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["credits_spent"] == 8
        assert data["remaining_credits"] == 12
        assert data["creator_earnings"] == 5

    def test_read_invalid_purchase_type(self, client, make_user, make_story, auth_headers):
        story = make_story(make_user(), published=True)
        response = client.post(
            f"/api/stories/{story.id}/read",
            json={"purchase_type": "rental"},
            headers=auth_headers(make_user()),
        )
        assert response.status_code == 422
        assert response.json()["code"] == "VALIDATION_ERROR"

    def test_checkout(self, client, make_user, make_story, auth_headers, gateway):
        story = make_story(make_user(), published=True, price_usd=2.5)
        response = client.post(f"/api/stories/{story.id}/checkout", headers=auth_headers(make_user()))

        assert response.status_code == 200
        assert response.json()["amount_usd"] == 2.5
