from types import SimpleNamespace

import pytest
import stripe

from dayssupply.billing.errors import SubscriptionStoreError
from dayssupply.billing.normalizer import NormalizedSubscription
from dayssupply.billing.repositories import get_subscription_repository
from dayssupply.config import settings
from dayssupply.main import app
from dayssupply.models.subscription import RawStatus
from tests.helpers.fakes import ALICE, FakeStore


class FakeStripeSessions:
    """Records session-create calls in place of the Stripe API."""

    def __init__(self) -> None:
        self.checkout_calls: list[dict] = []
        self.portal_calls: list[dict] = []
        self.fail = False

    def create_checkout(self, **params):
        if self.fail:
            raise stripe.APIConnectionError("network down")
        self.checkout_calls.append(params)
        return SimpleNamespace(id="cs_test_1", url="https://checkout.stripe.test/cs_test_1")

    def create_portal(self, **params):
        if self.fail:
            raise stripe.APIConnectionError("network down")
        self.portal_calls.append(params)
        return SimpleNamespace(id="bps_1", url="https://billing.stripe.test/p/bps_1")


@pytest.fixture
def fake_sessions(monkeypatch):
    fake = FakeStripeSessions()
    monkeypatch.setattr(stripe.checkout.Session, "create", fake.create_checkout)
    monkeypatch.setattr(stripe.billing_portal.Session, "create", fake.create_portal)
    return fake


def _link_customer(repository) -> None:
    repository.apply(
        NormalizedSubscription(
            subscription_id="sub_alice",
            raw_status=RawStatus.ACTIVE,
            account_id=ALICE.id,
            customer_id="cus_alice",
        )
    )


def test_checkout_requires_authentication(client, identity, gateway, fake_sessions):
    assert client.post("/api/stripe/create-checkout").status_code == 401
    invalid = client.post(
        "/api/stripe/create-checkout", headers={"Authorization": "Bearer nope"}
    )
    assert invalid.status_code == 401
    assert fake_sessions.checkout_calls == []


def test_checkout_links_session_to_account(
    client, identity, gateway, fake_sessions, alice_headers
):
    response = client.post("/api/stripe/create-checkout", headers=alice_headers)

    assert response.status_code == 200
    assert response.json() == {"url": "https://checkout.stripe.test/cs_test_1"}
    params = fake_sessions.checkout_calls[0]
    assert params["mode"] == "subscription"
    assert params["client_reference_id"] == ALICE.id
    assert params["metadata"] == {"supabase_user_id": ALICE.id}
    assert params["subscription_data"]["metadata"] == {"supabase_user_id": ALICE.id}
    assert params["subscription_data"]["trial_period_days"] == 30
    assert params["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]
    assert params["customer_email"] == ALICE.email
    assert params["success_url"] == "https://dayssupply.test/app?checkout=success"
    assert params["cancel_url"] == "https://dayssupply.test/pricing?checkout=cancel"


def test_checkout_without_trial(
    client, identity, gateway, fake_sessions, alice_headers, monkeypatch
):
    monkeypatch.setattr(settings, "stripe_trial_days", 0)
    client.post("/api/stripe/create-checkout", headers=alice_headers)
    assert "trial_period_days" not in fake_sessions.checkout_calls[0]["subscription_data"]


def test_checkout_provider_failure_is_502(client, identity, gateway, fake_sessions, alice_headers):
    fake_sessions.fail = True
    response = client.post("/api/stripe/create-checkout", headers=alice_headers)
    assert response.status_code == 502
    assert response.json()["detail"] == "Unable to start checkout"


def test_checkout_not_configured_is_503(
    client, identity, gateway, fake_sessions, alice_headers, monkeypatch
):
    monkeypatch.setattr(settings, "stripe_price_id", None)
    response = client.post("/api/stripe/create-checkout", headers=alice_headers)
    assert response.status_code == 503


def test_identity_outage_is_503(client, identity, gateway, fake_sessions):
    response = client.post("/api/stripe/create-checkout", headers={"Authorization": "Bearer boom"})
    assert response.status_code == 503


def test_portal_requires_stored_customer(
    client, repository, identity, gateway, fake_sessions, alice_headers
):
    response = client.post("/api/stripe/create-portal", headers=alice_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "no_subscription"
    assert fake_sessions.portal_calls == []


def test_portal_opens_for_stored_customer(
    client, repository, identity, gateway, fake_sessions, alice_headers
):
    _link_customer(repository)

    response = client.post("/api/stripe/create-portal", headers=alice_headers)

    assert response.status_code == 200
    assert response.json() == {"url": "https://billing.stripe.test/p/bps_1"}
    assert fake_sessions.portal_calls == [
        {"customer": "cus_alice", "return_url": "https://dayssupply.test/app"}
    ]


def test_portal_store_failure_is_500(client, identity, gateway, fake_sessions, alice_headers):
    app.dependency_overrides[get_subscription_repository] = lambda: FakeStore(
        SubscriptionStoreError("db down")
    )
    response = client.post("/api/stripe/create-portal", headers=alice_headers)
    assert response.status_code == 500
    assert response.json()["detail"] == "db_error"


def test_portal_provider_failure_is_502(
    client, repository, identity, gateway, fake_sessions, alice_headers
):
    _link_customer(repository)
    fake_sessions.fail = True
    response = client.post("/api/stripe/create-portal", headers=alice_headers)
    assert response.status_code == 502
