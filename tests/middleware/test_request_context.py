"""Tests for the request context middleware.

Every response carries an X-Request-ID header, either echoed from a
well-formed client value or freshly generated.
"""

from __future__ import annotations

import uuid

from fastapi.testclient import TestClient

from lms.middleware.request_context import resolve_request_id


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])  # raises ValueError if invalid


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    custom_id = "my-custom-request-id-123"
    resp = client.get("/health", headers={"X-Request-ID": custom_id})
    assert resp.headers.get("x-request-id") == custom_id


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get("/v1/progress/topics")  # No auth token → 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_malformed_request_id_is_replaced() -> None:
    assert resolve_request_id("ok-id_1.2") == "ok-id_1.2"
    replaced = resolve_request_id("bad id\nINFO forged line")
    uuid.UUID(replaced)
    uuid.UUID(resolve_request_id("x" * 200))
    uuid.UUID(resolve_request_id(None))
