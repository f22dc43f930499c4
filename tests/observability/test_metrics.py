from __future__ import annotations

import logging

from tablebill.config import settings
from tablebill.observability import metrics as metrics_module
from tablebill.observability.metrics import MetricsReporter


class _RecordingStatsClient:
    def __init__(self, host: str, port: int, prefix: str) -> None:
        self.calls: list[tuple[str, float, float]] = []

    def incr(self, name: str, value: float, rate: float = 1.0) -> None:
        self.calls.append((name, value, rate))


def _metric_payloads(caplog, event: str) -> list[dict]:
    return [r.metrics for r in caplog.records if r.getMessage() == event]


def test_increment_logs_namespaced_counter(caplog):
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="tablebill.metrics"):
        reporter.increment("billing.webhook.received", tags={"type": "invoice.payment_failed"})
        reporter.increment("tablebill.billing.store.updated", value=2)

    payloads = _metric_payloads(caplog, "tablebill.metric")
    assert [p["metric"] for p in payloads] == [
        "tablebill.billing.webhook.received",
        "tablebill.billing.store.updated",
    ]
    assert payloads[0]["tags"] == {"type": "invoice.payment_failed"}
    assert payloads[1]["value"] == 2.0


def test_statsd_backend_receives_counters(monkeypatch):
    monkeypatch.setattr(settings, "metrics_backend", "statsd")
    monkeypatch.setattr(metrics_module, "StatsClient", _RecordingStatsClient)
    reporter = MetricsReporter()

    reporter.increment("admin.login.succeeded")

    assert reporter._statsd.calls == [("tablebill.admin.login.succeeded", 1.0, 1.0)]


def test_disabled_reporter_emits_nothing(monkeypatch, caplog):
    monkeypatch.setattr(settings, "metrics_disable", True)
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="tablebill.metrics"):
        reporter.increment("billing.webhook.received")
        reporter.alert("billing.webhook.db_missing", value=1, threshold=0, severity="critical")

    assert caplog.records == []


def test_alert_carries_schema_version(caplog):
    reporter = MetricsReporter()

    with caplog.at_level(logging.INFO, logger="tablebill.metrics"):
        reporter.alert("billing.webhook.db_missing", value=1, threshold=0, severity="critical")

    (payload,) = _metric_payloads(caplog, "tablebill.alert")
    assert payload["severity"] == "critical"
    assert payload["schema_version"] == settings.metrics_schema_version
