from datetime import datetime, timedelta, timezone

import dayssupply.api.routes.pro_status as pro_status_routes
from dayssupply.billing.errors import SubscriptionStoreError
from dayssupply.billing.normalizer import NormalizedSubscription
from dayssupply.billing.repositories import get_subscription_repository
from dayssupply.config import settings
from dayssupply.main import app
from dayssupply.models.subscription import RawStatus
from tests.helpers.fakes import ALICE, FakeStore
from tests.helpers.metrics_stub import StubMetrics

EXPECTED_FIELDS = {
    "is_entitled",
    "status",
    "raw_status",
    "period_end",
    "days_remaining",
    "stripe_customer_id",
    "stripe_subscription_id",
    "updated_at",
    "reason",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)  # noqa: UP017


def _store(repository, status: RawStatus, period_end: datetime | None) -> None:
    repository.apply(
        NormalizedSubscription(
            subscription_id="sub_alice",
            raw_status=status,
            account_id=ALICE.id,
            customer_id="cus_alice",
            period_end=period_end,
        )
    )


def test_missing_token_reports_no_user(client, repository, identity):
    response = client.get("/api/pro-status")

    assert response.status_code == 200
    body = response.json()
    assert set(body) == EXPECTED_FIELDS
    assert body["is_entitled"] is False
    assert body["status"] == "no_user"
    assert body["reason"] == "missing_token"


def test_invalid_token_reports_no_user(client, repository, identity):
    response = client.get("/api/pro-status", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 200
    assert response.json()["status"] == "no_user"
    assert response.json()["reason"] == "invalid_token"


def test_identity_outage_degrades_to_invalid_token(client, repository, identity):
    response = client.get("/api/pro-status", headers={"Authorization": "Bearer boom"})
    assert response.status_code == 200
    assert response.json()["reason"] == "invalid_token"


def test_no_record_reports_unknown(client, repository, identity, alice_headers):
    response = client.get("/api/pro-status", headers=alice_headers)
    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "unknown"
    assert body["reason"] == "no_row"
    assert body["is_entitled"] is False


def test_trialing_record_is_entitled_with_days_remaining(
    client, repository, identity, alice_headers
):
    _store(repository, RawStatus.TRIALING, _now() + timedelta(days=6, hours=2))

    body = client.get("/api/pro-status", headers=alice_headers).json()

    assert body["is_entitled"] is True
    assert body["status"] == "trialing"
    assert body["raw_status"] == "trialing"
    assert body["days_remaining"] == 7
    assert body["stripe_customer_id"] == "cus_alice"
    assert body["stripe_subscription_id"] == "sub_alice"
    assert body["reason"] is None
    assert body["updated_at"]


def test_expired_active_record_reports_canceled(client, repository, identity, alice_headers):
    _store(repository, RawStatus.ACTIVE, _now() - timedelta(minutes=1))

    body = client.get("/api/pro-status", headers=alice_headers).json()

    assert body["is_entitled"] is False
    assert body["status"] == "canceled"
    assert body["raw_status"] == "active"


def test_store_error_reports_db_error(client, identity, alice_headers, monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(pro_status_routes, "metrics", stub)
    app.dependency_overrides[get_subscription_repository] = lambda: FakeStore(
        SubscriptionStoreError("db down")
    )

    response = client.get("/api/pro-status", headers=alice_headers)

    assert response.status_code == 200
    assert response.json()["reason"] == "db_error"
    assert response.json()["is_entitled"] is False
    assert stub.counted("pro_status.db_error")


def test_screenshot_mode_forces_entitlement(client, repository, identity, monkeypatch):
    monkeypatch.setattr(settings, "screenshot_mode", True)
    body = client.get("/api/pro-status").json()
    assert body["is_entitled"] is True
    assert body["reason"] == "screenshot_mode"


def test_gating_disabled_forces_entitlement(
    client, repository, identity, alice_headers, monkeypatch
):
    monkeypatch.setattr(settings, "auth_disabled", True)
    body = client.get("/api/pro-status", headers=alice_headers).json()
    assert body["is_entitled"] is True
    assert body["reason"] == "gating_disabled"
    assert body["status"] == "unknown"
