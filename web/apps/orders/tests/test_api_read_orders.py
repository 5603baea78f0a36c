"""API tests for reading orders back: detail and paginated list."""

from uuid import uuid4

import pytest

from apps.orders.models import OrderItemModel, OrderModel

DETAIL_URL = "/api/orders/{oid}/"
LIST_URL = "/api/orders/"


def seed(user, total="100.00", product=None):
    o = OrderModel.objects.create(user=user, total=total, customer_name="Asha", email=user.email)
    OrderItemModel.objects.create(
        order=o, product=product, product_name=product.name if product else "Retired Ring", quantity=1, price=total
    )
    return o


@pytest.mark.django_db
def test_owner_reads_order_with_items(shopper_client, shopper, make_product):
    o = seed(shopper, product=make_product("P1", name="Gold Ring"))
    r = shopper_client.get(DETAIL_URL.format(oid=o.id))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == str(o.id)
    assert body["status"] == "PENDING"
    assert body["items"][0]["product"] == {"id": "P1", "name": "Gold Ring", "shipping_cost": "50.00"}


@pytest.mark.django_db
def test_deleted_product_falls_back_to_name_snapshot(shopper_client, shopper):
    o = seed(shopper, product=None)
    body = shopper_client.get(DETAIL_URL.format(oid=o.id)).json()
    assert body["items"][0]["product_id"] is None
    assert body["items"][0]["product"]["name"] == "Retired Ring"


@pytest.mark.django_db
def test_other_users_order_is_forbidden(client, shopper, django_user_model):
    o = seed(shopper)
    intruder = django_user_model.objects.create_user(username="eve", password="pw")
    client.force_login(intruder)
    r = client.get(DETAIL_URL.format(oid=o.id))
    assert r.status_code == 403
    assert r.json()["detail"] == "FORBIDDEN"


@pytest.mark.django_db
def test_staff_can_read_any_order(client, shopper, staff):
    o = seed(shopper)
    client.force_login(staff)
    assert client.get(DETAIL_URL.format(oid=o.id)).status_code == 200


@pytest.mark.django_db
def test_get_order_not_found_returns_404(shopper_client):
    r = shopper_client.get(DETAIL_URL.format(oid=uuid4()))
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_list_returns_only_own_orders_paginated(shopper_client, shopper, staff):
    mine = [seed(shopper, total=f"{n}.00") for n in (10, 20, 30)]
    seed(staff)

    r = shopper_client.get(LIST_URL, {"page_size": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 3
    assert body["page"] == 1 and body["page_size"] == 2
    assert len(body["results"]) == 2
    assert {o["id"] for o in body["results"]} <= {str(o.id) for o in mine}

    page2 = shopper_client.get(LIST_URL, {"page": 2, "page_size": 2}).json()
    assert len(page2["results"]) == 1
