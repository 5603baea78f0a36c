"""Unit tests for the HTTP payment gateway client.

These tests verify request shape, success mapping, business rejections and
network errors by monkeypatching ``httpx.Client.post``.
"""
import httpx
import pytest

from apps.orders.domain import GatewayRejected
from apps.orders.http_adapters import HttpPaymentGatewayClient


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | None): JSON body to return from ``json()``.
    """
    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data or {}
    def raise_for_status(self):
        if self.status_code >= 400:
            raise httpx.HTTPStatusError("err", request=None, response=None)
    def json(self): return self._json


def client():
    return HttpPaymentGatewayClient(base_url="http://gateway/", key_id="rzp_k", key_secret="s", timeout=1.0)


def test_create_order_ok(monkeypatch):
    """2xx maps the JSON body onto a GatewayOrder."""
    seen = {}
    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(200, {"id": "order_123", "amount": 5000, "currency": "INR", "receipt": "r1"})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    out = client().create_order(5000, "INR", "r1", {"user_id": "7"})

    assert out.id == "order_123" and out.amount == 5000 and out.receipt == "r1"
    assert seen["url"] == "http://gateway/v1/orders"
    assert seen["json"] == {"amount": 5000, "currency": "INR", "receipt": "r1", "notes": {"user_id": "7"}}
    assert seen["headers"]["X-Retry-Count"] == "0"


def test_create_order_uses_basic_auth(monkeypatch):
    captured = {}
    real_init = httpx.Client.__init__
    def spy_init(self, *a, **kw):
        captured["auth"] = kw.get("auth")
        real_init(self, *a, **kw)
    monkeypatch.setattr(httpx.Client, "__init__", spy_init)
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, **kw: DummyResp(201, {"id": "order_1"}))

    client().create_order(100, "INR", "r")
    assert captured["auth"] == ("rzp_k", "s")


def test_create_order_rejected(monkeypatch):
    """4xx raises GatewayRejected carrying the gateway's description."""
    def fake_post(self, url, json=None, headers=None, **kw):
        return DummyResp(400, {"error": {"code": "BAD_REQUEST_ERROR", "description": "amount too small"}})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    with pytest.raises(GatewayRejected) as e:
        client().create_order(1, "INR", "r")
    assert e.value.status_code == 400
    assert e.value.detail == "amount too small"


def test_create_order_network_error(monkeypatch, settings):
    """Transport errors propagate once retries are exhausted."""
    settings.HTTP_RETRY_MAX = 0
    def fake_post(self, url, json=None, headers=None, **kw):
        raise httpx.ConnectError("boom")
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    with pytest.raises(httpx.ConnectError):
        client().create_order(1000, "INR", "r")


def test_request_id_is_propagated(monkeypatch):
    from gateway.middleware import REQUEST_ID_CTX

    seen = {}
    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(headers)
        return DummyResp(200, {"id": "order_1"})
    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)

    token = REQUEST_ID_CTX.set("req-42")
    try:
        client().create_order(100, "INR", "r")
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["X-Request-ID"] == "req-42"
