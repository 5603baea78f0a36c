"""API tests for gateway order creation and post-payment checkout."""

import httpx
import pytest
from django.conf import settings

from apps.orders.domain import GatewayRejected
from apps.orders.models import OrderModel, ProductModel
from apps.orders.payments import compute_signature

CREATE_PAYMENT_URL = "/api/payment/create-order/"
VERIFY_URL = "/api/payment/verify/"


def signed(order_id="order_ABC", payment_id="pay_XYZ", secret=None):
    secret = secret or settings.PAYMENT_GATEWAY_KEY_SECRET
    return {
        "razorpay_order_id": order_id,
        "razorpay_payment_id": payment_id,
        "razorpay_signature": compute_signature(secret, order_id, payment_id),
    }


@pytest.mark.django_db
def test_create_gateway_order_returns_public_key(shopper_client):
    r = shopper_client.post(CREATE_PAYMENT_URL, data={"amount": "1500.50"}, content_type="application/json")
    assert r.status_code == 200
    body = r.json()
    assert body["success"] is True
    assert body["order_id"].startswith("order_")
    assert body["amount"] == 150050
    assert body["currency"] == "INR"
    assert body["key"] == "rzp_test_key"


@pytest.mark.django_db
@pytest.mark.parametrize("payload", [{"amount": "0"}, {"amount": "-5"}, {"amount": "10", "currency": "RUPEES"}, {}])
def test_create_gateway_order_rejects_bad_amounts(shopper_client, payload):
    r = shopper_client.post(CREATE_PAYMENT_URL, data=payload, content_type="application/json")
    assert r.status_code == 400


@pytest.mark.django_db
def test_gateway_rejection_maps_to_502(shopper_client, monkeypatch):
    class Rejecting:
        def create_order(self, amount_minor, currency, receipt, notes=None):
            raise GatewayRejected(400, "amount exceeds maximum")

    monkeypatch.setattr("apps.orders.providers.get_payment_gateway", lambda: Rejecting())
    r = shopper_client.post(CREATE_PAYMENT_URL, data={"amount": "10"}, content_type="application/json")
    assert r.status_code == 502
    assert r.json() == {"detail": "PAYMENT_GATEWAY_REJECTED", "error": "amount exceeds maximum"}


@pytest.mark.django_db
def test_gateway_outage_maps_to_503(shopper_client, monkeypatch):
    class Down:
        def create_order(self, amount_minor, currency, receipt, notes=None):
            raise httpx.ConnectError("refused")

    monkeypatch.setattr("apps.orders.providers.get_payment_gateway", lambda: Down())
    r = shopper_client.post(CREATE_PAYMENT_URL, data={"amount": "10"}, content_type="application/json")
    assert r.status_code == 503
    assert r.json()["detail"] == "UPSTREAM_UNAVAILABLE"


@pytest.mark.django_db
def test_verified_payment_creates_processing_order(shopper_client, make_product, mailoutbox):
    make_product("P1", stock_count=5)
    payload = {**signed(), "items": [{"productId": "P1", "quantity": 1, "price": "1000"}]}

    r = shopper_client.post(VERIFY_URL, data=payload, content_type="application/json")

    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["payment_id"] == "pay_XYZ"
    assert body["message"] == "Payment verified and order created successfully"
    assert body["order"]["status"] == "PROCESSING"
    assert body["order"]["payment_id"] == "pay_XYZ"
    assert body["order"]["meta"]["invoice"]["status"] == "sent"
    assert "Paid" in mailoutbox[0].alternatives[0][0]
    assert ProductModel.objects.get(id="P1").stock_count == 4


@pytest.mark.django_db
def test_forged_signature_creates_nothing(shopper_client, make_product, mailoutbox):
    make_product("P1", stock_count=5)
    payload = {**signed(secret="attacker"), "items": [{"product_id": "P1", "quantity": 1, "price": "1"}]}

    r = shopper_client.post(VERIFY_URL, data=payload, content_type="application/json")

    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYMENT_SIGNATURE"
    assert OrderModel.objects.count() == 0
    assert ProductModel.objects.get(id="P1").stock_count == 5
    assert mailoutbox == []


@pytest.mark.django_db
def test_missing_secret_returns_500(shopper_client, make_product, settings):
    settings.PAYMENT_GATEWAY_KEY_SECRET = ""
    make_product("P1", stock_count=5)
    payload = {**signed(), "items": [{"product_id": "P1", "quantity": 1, "price": "1"}]}

    r = shopper_client.post(VERIFY_URL, data=payload, content_type="application/json")

    assert r.status_code == 500
    assert r.json()["detail"] == "PAYMENT_SECRET_MISSING"
    assert OrderModel.objects.count() == 0


@pytest.mark.django_db
def test_missing_gateway_fields_is_a_payload_error(shopper_client):
    payload = {"razorpay_order_id": "order_ABC", "items": [{"product_id": "P1", "quantity": 1}]}
    r = shopper_client.post(VERIFY_URL, data=payload, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["detail"] == "INVALID_PAYLOAD"


@pytest.mark.django_db
def test_paid_checkout_still_validates_stock(shopper_client, make_product):
    make_product("P1", stock_count=1, name="Gold Ring")
    payload = {**signed(), "items": [{"product_id": "P1", "quantity": 2, "price": "1"}]}

    r = shopper_client.post(VERIFY_URL, data=payload, content_type="application/json")

    assert r.status_code == 422
    assert r.json()["violations"][0]["reason"] == "Insufficient stock for Gold Ring. Available: 1, Requested: 2"
