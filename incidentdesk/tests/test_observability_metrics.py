from incidentdesk.observability.metrics import InMemoryMetrics


def test_metrics_snapshot_includes_latency_percentiles_and_counts():
    m = InMemoryMetrics(latency_window=10)

    m.observe_request(201, 12.0)
    m.observe_request(200, 24.0)
    m.observe_request(409, 3.0)
    m.observe_request(500, 200.0)

    snap = m.snapshot()

    assert snap["requests_total"] == 4
    assert snap["status_counts"]["2xx"] == 2
    assert snap["status_counts"]["4xx"] == 1
    assert snap["status_counts"]["5xx"] == 1
    assert snap["latency_ms"]["samples"] == 4
    assert snap["latency_ms"]["p95"] >= snap["latency_ms"]["p50"]


def test_lifecycle_counters():
    m = InMemoryMetrics()

    m.increment("escalation.sent")
    m.increment("escalation.sent")
    m.increment("transitions.rejected", amount=3)

    assert m.counter("escalation.sent") == 2
    assert m.counter("escalation.failed") == 0
    assert m.snapshot()["counters"] == {"escalation.sent": 2, "transitions.rejected": 3}


def test_latency_window_is_bounded():
    m = InMemoryMetrics(latency_window=2)

    for duration in (1.0, 2.0, 3.0):
        m.observe_request(200, duration)

    snap = m.snapshot()
    assert snap["requests_total"] == 3
    assert snap["latency_ms"]["samples"] == 2
