"""Tests for request correlation, body size limits and the health probe."""

import logging

import pytest

from gateway.logging_filters import RequestIdFilter
from gateway.middleware import REQUEST_ID_CTX


@pytest.mark.django_db
def test_request_id_is_echoed(client):
    r = client.get("/api/service-status/", HTTP_X_REQUEST_ID="abc-123")
    assert r["X-Request-ID"] == "abc-123"


@pytest.mark.django_db
def test_request_id_is_generated_when_missing_or_unsafe(client):
    r1 = client.get("/api/service-status/")
    r2 = client.get("/api/service-status/", HTTP_X_REQUEST_ID="<script>")
    assert len(r1["X-Request-ID"]) == 32
    assert r2["X-Request-ID"] != "<script>"


@pytest.mark.django_db
def test_oversized_api_body_is_rejected(shopper_client, settings):
    settings.API_MAX_BYTES = 64
    r = shopper_client.post("/api/orders/", data={"items": [{"product_id": "P" * 100, "quantity": 1}]},
                            content_type="application/json")
    assert r.status_code == 413
    assert r.json()["detail"] == "PAYLOAD_TOO_LARGE"


def test_log_filter_stamps_request_id():
    record = logging.LogRecord("orders", logging.INFO, __file__, 1, "msg", None, None)
    token = REQUEST_ID_CTX.set("rid-9")
    try:
        assert RequestIdFilter().filter(record) is True
    finally:
        REQUEST_ID_CTX.reset(token)
    assert record.request_id == "rid-9"


@pytest.mark.django_db
def test_health_reports_db_and_service_status(client):
    r = client.get("/health/")
    assert r.status_code == 200
    assert r.json() == {
        "ok": True,
        "components": {"db": {"ok": True}, "service_status": {"ok": True, "accepting_orders": True}},
    }
