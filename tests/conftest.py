import pytest
from fastapi.testclient import TestClient

from dayssupply.billing.repositories import (
    InMemorySubscriptionRepository,
    get_subscription_repository,
)
from dayssupply.billing.stripe_gateway import get_stripe_gateway
from dayssupply.config import settings
from dayssupply.core.auth import get_identity_provider
from dayssupply.main import app
from tests.helpers.fakes import (
    ALICE,
    ALICE_TOKEN,
    WEBHOOK_SECRET,
    FakeIdentityProvider,
    FakeStripeGateway,
)


@pytest.fixture(autouse=True)
def billing_settings(monkeypatch):
    """Pin Stripe and gating settings so tests never depend on the local .env."""
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_stub")
    monkeypatch.setattr(settings, "stripe_webhook_secret", WEBHOOK_SECRET)
    monkeypatch.setattr(settings, "stripe_price_id", "price_pro_monthly")
    monkeypatch.setattr(settings, "stripe_trial_days", 30)
    monkeypatch.setattr(settings, "site_url", "https://dayssupply.test")
    monkeypatch.setattr(settings, "auth_disabled", False)
    monkeypatch.setattr(settings, "screenshot_mode", False)
    yield settings
    app.dependency_overrides.clear()


@pytest.fixture
def client():
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def repository():
    repo = InMemorySubscriptionRepository()
    app.dependency_overrides[get_subscription_repository] = lambda: repo
    return repo


@pytest.fixture
def identity():
    provider = FakeIdentityProvider({ALICE_TOKEN: ALICE})
    app.dependency_overrides[get_identity_provider] = lambda: provider
    return provider


@pytest.fixture
def gateway():
    fake = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: fake
    return fake


@pytest.fixture
def alice_headers():
    return {"Authorization": f"Bearer {ALICE_TOKEN}"}
