"""Tests for Prometheus metrics middleware.

The default registry is global and counters only go up, so these tests
assert on deltas: read before, act, read after.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from tests.conftest import auth, mint_token


def _get_sample(name: str, labels: dict | None = None) -> float:
    """Read a metric sample's current value from the global registry."""
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def test_request_counter_increments(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before >= 1


def test_endpoint_label_uses_route_template(client: TestClient) -> None:
    """Ids in the URL must not leak into label values."""
    labels = {
        "method": "GET",
        "endpoint": "/v1/progress/courses/{course_id}",
        "status_code": "404",
    }
    before = _get_sample("http_requests_total", labels)
    token = mint_token(sub=str(uuid.uuid4()))
    client.get(f"/v1/progress/courses/{uuid.uuid4()}", headers=auth(token))
    assert _get_sample("http_requests_total", labels) - before == 1


def test_unmatched_paths_collapse_to_one_label(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get(f"/no/such/{uuid.uuid4()}")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_request_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before >= 1


def test_metrics_endpoint_not_counted(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/metrics", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/metrics")
    assert _get_sample("http_requests_total", labels) == before
