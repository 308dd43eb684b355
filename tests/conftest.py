"""
Pytest configuration and fixtures
Tests run against an in-memory SQLite database with Stripe and Anthropic replaced by fakes
"""
import hashlib
import hmac
import itertools
import os
import sys
import time
from pathlib import Path
from types import SimpleNamespace
from typing import Optional, Dict, Any
from unittest.mock import MagicMock, AsyncMock

import pytest

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["SECRET_KEY"] = "test-secret-key-for-infinite-pages-tests-min-32-chars"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_infinite_pages"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_infinite_pages"
os.environ["ANTHROPIC_API_KEY"] = "test-anthropic-key"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["BCRYPT_ROUNDS"] = "4"  # Fast hashing for tests
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests
os.environ.pop("REDIS_URL", None)

import stripe
from fastapi.testclient import TestClient

# Import after setting env vars
from infinite_pages.api_server import app
from infinite_pages.auth import create_access_token, get_password_hash
from infinite_pages.db.base import Base
from infinite_pages.db.engine import engine, SessionLocal, get_db
from infinite_pages.db.models import User, Story, Chapter, SubscriptionTier, SubscriptionStatus, StoryStatus
from infinite_pages.services.ai_service import AIService, get_ai_service
from infinite_pages.services.billing_gateway import BillingGateway, get_gateway
from infinite_pages.services.llm_cache import LLMResponseCache, get_llm_cache
from infinite_pages.services.moderation_service import ModerationService

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]
TEST_PASSWORD = "testpassword123"


class FakeGateway(BillingGateway):
    """In-memory payment provider that records every call"""

    def __init__(self, webhook_secret: str = WEBHOOK_SECRET):
        self.webhook_secret = webhook_secret
        self.connect_webhook_secret = webhook_secret
        self.calls = []
        self.transfer_error: Optional[Exception] = None
        self.account = {
            "charges_enabled": False,
            "payouts_enabled": False,
            "details_submitted": False,
            "requirements": ["external_account"],
        }
        self.subscription = {
            "status": "active",
            "current_period_end": None,
            "price_id": "price_premium_monthly",
            "metadata": {},
        }
        self._ids = itertools.count(1)

    def _next(self, prefix: str) -> str:
        return f"{prefix}_test_{next(self._ids)}"

    def calls_to(self, name: str):
        return [kwargs for call, kwargs in self.calls if call == name]

    def create_customer(self, email, name=None, metadata=None):
        self.calls.append(("create_customer", {"email": email, "name": name, "metadata": metadata}))
        return {"customer_id": self._next("cus"), "provider": "stripe"}

    def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, metadata=None):
        self.calls.append(("create_checkout_session", {
            "customer_id": customer_id,
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }))
        session_id = self._next("cs")
        return {"session_id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def create_portal_session(self, customer_id, return_url):
        self.calls.append(("create_portal_session", {"customer_id": customer_id, "return_url": return_url}))
        return {"url": "https://billing.stripe.test/portal"}

    def create_payment_intent(self, amount_cents, currency="usd", customer_id=None, metadata=None):
        self.calls.append(("create_payment_intent", {
            "amount_cents": amount_cents,
            "currency": currency,
            "customer_id": customer_id,
            "metadata": metadata,
        }))
        intent_id = self._next("pi")
        return {"payment_intent_id": intent_id, "client_secret": f"{intent_id}_secret", "status": "requires_payment_method"}

    def retrieve_subscription(self, subscription_id):
        self.calls.append(("retrieve_subscription", {"subscription_id": subscription_id}))
        return {"subscription_id": subscription_id, "customer_id": None, **self.subscription}

    def create_transfer(self, amount_cents, destination, metadata=None, description=None):
        self.calls.append(("create_transfer", {
            "amount_cents": amount_cents,
            "destination": destination,
            "metadata": metadata,
            "description": description,
        }))
        if self.transfer_error is not None:
            raise self.transfer_error
        return {"transfer_id": self._next("tr"), "amount_cents": amount_cents}

    def create_connect_account(self, email, country="US", business_type="individual", metadata=None):
        self.calls.append(("create_connect_account", {"email": email, "country": country}))
        return {"account_id": self._next("acct")}

    def create_account_link(self, account_id, refresh_url, return_url):
        self.calls.append(("create_account_link", {"account_id": account_id}))
        return {"url": f"https://connect.stripe.test/{account_id}", "expires_at": None}

    def retrieve_account(self, account_id):
        self.calls.append(("retrieve_account", {"account_id": account_id}))
        return {"account_id": account_id, **self.account}

    def verify_webhook_signature(self, payload, signature, secret=None):
        try:
            stripe.Webhook.construct_event(payload, signature, secret or self.webhook_secret)
            return True
        except (stripe.SignatureVerificationError, ValueError):
            return False


def ai_response(text: str, input_tokens: int = 100, output_tokens: int = 200):
    """Shape of an Anthropic Messages API response"""
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens),
    )


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema per test; the API uses the same session"""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db

    yield session

    session.close()
    Base.metadata.drop_all(bind=engine)
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client(db_session):
    """Create test client (lifespan not started)"""
    return TestClient(app)


@pytest.fixture(scope="function")
def gateway():
    """Fake Stripe gateway wired into the API"""
    fake = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_gateway, None)


@pytest.fixture(scope="function")
def ai_client():
    """Stand-in for anthropic.AsyncAnthropic"""
    mock_client = MagicMock()
    mock_client.messages.create = AsyncMock(return_value=ai_response('{"title": "Generated"}'))
    return mock_client


@pytest.fixture(scope="function")
def ai_service(ai_client):
    """AI service with a private cache, wired into the API"""
    service = AIService(client=ai_client, cache=LLMResponseCache(), moderation=ModerationService())
    app.dependency_overrides[get_ai_service] = lambda: service
    yield service
    app.dependency_overrides.pop(get_ai_service, None)


@pytest.fixture(scope="function")
def ai_reply(ai_client):
    """Set the next AI response text"""
    def _reply(text: str, input_tokens: int = 100, output_tokens: int = 200):
        ai_client.messages.create.return_value = ai_response(text, input_tokens, output_tokens)
        return ai_client
    return _reply


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory for users; active Basic subscribers with 100 credits by default"""
    counter = itertools.count(1)

    def _make_user(**overrides) -> User:
        n = next(counter)
        values: Dict[str, Any] = {
            "email": f"user{n}@example.com",
            "hashed_password": get_password_hash(TEST_PASSWORD),
            "full_name": f"Test User {n}",
            "is_active": True,
            "subscription_tier": SubscriptionTier.BASIC.value,
            "subscription_status": SubscriptionStatus.ACTIVE.value,
            "credits_balance": 100,
        }
        values.update(overrides)
        user = User(**values)
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture(scope="function")
def make_story(db_session):
    """Factory for stories with generated chapters"""
    def _make_story(owner: User, chapters: int = 3, published: bool = False, **overrides) -> Story:
        values: Dict[str, Any] = {
            "user_id": owner.id,
            "title": "The Glass Orchard",
            "genre": "fantasy",
            "premise": "A gardener discovers trees that grow memories instead of fruit.",
            "foundation": {"setting": "A valley of glass trees"},
            "status": StoryStatus.PUBLISHED.value if published else StoryStatus.IN_PROGRESS.value,
            "chapter_count": chapters,
            "word_count": chapters * 4,
            "is_published": published,
        }
        values.update(overrides)
        story = Story(**values)
        db_session.add(story)
        db_session.flush()
        for number in range(1, chapters + 1):
            db_session.add(Chapter(
                story_id=story.id,
                chapter_number=number,
                title=f"Chapter {number}",
                content=f"Chapter {number} text here.",
                summary=f"Summary of chapter {number}",
                word_count=4,
            ))
        db_session.commit()
        db_session.refresh(story)
        return story

    return _make_story


@pytest.fixture(scope="function")
def auth_headers():
    """Bearer headers for a user"""
    def _headers(user: User) -> Dict[str, str]:
        token = create_access_token(data={"sub": str(user.id)})
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope="function")
def sign_webhook():
    """Stripe-Signature header for a payload"""
    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp or int(time.time())
        signature = hmac.new(
            secret.encode("utf-8"),
            f"{timestamp}.{payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={signature}"
    return _sign


@pytest.fixture(scope="function", autouse=True)
def clear_cache():
    """Clear the global LLM cache before each test"""
    get_llm_cache().clear()
    yield
