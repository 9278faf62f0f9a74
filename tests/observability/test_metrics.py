import logging

import pytest

from dayssupply.config import settings
from dayssupply.observability.metrics import MetricsReporter


@pytest.fixture
def reporter(monkeypatch, caplog):
    monkeypatch.setattr(settings, "metrics_backend", "stdout")
    monkeypatch.setattr(settings, "metrics_disable", False)
    monkeypatch.setattr(settings, "metrics_namespace", "dayssupply")
    monkeypatch.setattr(settings, "metrics_sample_rate", 1.0)
    caplog.set_level(logging.DEBUG, logger="dayssupply.metrics")
    return MetricsReporter()


def _payloads(caplog, message):
    return [record.metrics for record in caplog.records if record.getMessage() == message]


def test_increment_logs_namespaced_counter(reporter, caplog):
    reporter.increment("stripe.webhook.persisted", tags={"type": "InvoicePaid"})

    assert _payloads(caplog, "dayssupply.metric") == [
        {
            "metric": "dayssupply.stripe.webhook.persisted",
            "value": 1.0,
            "type": "counter",
            "tags": {"type": "InvoicePaid"},
        }
    ]


def test_alert_carries_severity_and_schema_version(reporter, caplog):
    reporter.alert(
        "dayssupply.stripe.webhook.store_unavailable",
        value=1,
        threshold=0,
        severity="critical",
    )

    (payload,) = _payloads(caplog, "dayssupply.alert")
    assert payload["metric"] == "dayssupply.stripe.webhook.store_unavailable"
    assert payload["severity"] == "critical"
    assert payload["schema_version"] == settings.metrics_schema_version


def test_disabled_reporter_emits_nothing(monkeypatch, caplog):
    monkeypatch.setattr(settings, "metrics_disable", True)
    caplog.set_level(logging.DEBUG, logger="dayssupply.metrics")
    reporter = MetricsReporter()

    reporter.increment("pro_status.evaluated")
    reporter.alert("stripe.webhook.secret_missing", value=1, threshold=0, severity="critical")

    assert _payloads(caplog, "dayssupply.metric") == []
    assert _payloads(caplog, "dayssupply.alert") == []
