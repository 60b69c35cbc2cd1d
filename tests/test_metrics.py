from __future__ import annotations

import pytest

from app.monitoring.metrics import realtime_event_errors_total, realtime_events_total
from app.monitoring.registry import MetricsRegistry


def test_metrics_endpoint_exposes_realtime_series(client) -> None:
    realtime_events_total.labels("chat", "in", "ping").inc()
    realtime_event_errors_total.labels("forbidden").inc(2)

    response = client.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    body = response.text
    assert "# TYPE realtime_events_total counter" in body
    assert 'realtime_events_total{topic="chat",direction="in",action="ping"} 1' in body
    assert 'realtime_event_errors_total{code="forbidden"} 2' in body
    assert "# TYPE realtime_active_connections gauge" in body


def test_health_reports_connected_users(client) -> None:
    payload = client.get("/health").json()

    assert payload["status"] == "ok"
    assert payload["connected_users"] == 0
    assert payload["reconciler_running"] is True


def test_registry_rejects_duplicate_names_and_negative_counts() -> None:
    registry = MetricsRegistry()
    counter = registry.counter("demo_total", "Demo counter", label_names=("kind",))

    with pytest.raises(ValueError):
        registry.counter("demo_total", "Again")
    with pytest.raises(ValueError):
        counter.labels("a").inc(-1)
    with pytest.raises(ValueError):
        counter.inc()
