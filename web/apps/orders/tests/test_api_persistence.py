"""Integration tests for the ORM-backed order store.

These tests check the persisted rows directly, including that a failed
stock reservation leaves neither an order nor a partial decrement behind.
"""

import threading
from decimal import Decimal

import pytest
from django.db import DatabaseError, connection, connections

from apps.orders.domain import CartLine, CustomerDetails, OrderDraft, OrderStatus, StockValidationError
from apps.orders.models import OrderModel, ProductModel
from apps.orders.repository import OrderRepository, ProductRepository, ServiceStatusRepository


def draft(user, *lines, status=OrderStatus.PENDING):
    return OrderDraft(
        user_id=user.pk,
        lines=[CartLine(pid, qty, Decimal("10.00")) for pid, qty in lines],
        total=Decimal("99.00"),
        customer=CustomerDetails(name="Asha", email="asha@example.com"),
        status=status,
    )


@pytest.mark.django_db
def test_create_persists_header_and_items(shopper, make_product):
    make_product("P1", stock_count=5, name="Gold Ring")
    placed = OrderRepository().create(draft(shopper, ("P1", 2)), reserve_stock=True)

    with connection.cursor() as cur:
        cur.execute("select product_name, quantity, price from order_items where product_id = %s", ["P1"])
        rows = cur.fetchall()
    assert len(rows) == 1
    name, quantity, price = rows[0]
    assert name == "Gold Ring" and quantity == 2 and Decimal(str(price)) == Decimal("10.00")

    assert OrderModel.objects.get(id=placed.id).total == Decimal("99.00")
    assert ProductModel.objects.get(id="P1").stock_count == 3


@pytest.mark.django_db
def test_reservation_is_all_or_nothing(shopper, make_product):
    make_product("P1", stock_count=5)
    make_product("P2", stock_count=1, name="Pearl Studs")

    with pytest.raises(StockValidationError) as e:
        OrderRepository().create(draft(shopper, ("P1", 2), ("P2", 2)), reserve_stock=True)

    assert e.value.violations[0].reason == "Insufficient stock for Pearl Studs. Available: 1, Requested: 2"
    assert OrderModel.objects.count() == 0
    assert ProductModel.objects.get(id="P1").stock_count == 5


@pytest.mark.django_db
def test_reservation_sums_duplicate_lines(shopper, make_product):
    make_product("P1", stock_count=5)
    with pytest.raises(StockValidationError) as e:
        OrderRepository().create(draft(shopper, ("P1", 3), ("P1", 3)), reserve_stock=True)
    assert e.value.violations[0].requested == 6


@pytest.mark.django_db
def test_without_reservation_stock_is_untouched(shopper, make_product):
    make_product("P1", stock_count=5)
    OrderRepository().create(draft(shopper, ("P1", 2)), reserve_stock=False)
    assert ProductModel.objects.get(id="P1").stock_count == 5


@pytest.mark.django_db
def test_decrement_floors_at_zero_and_clears_flag(make_product):
    make_product("P1", stock_count=2)
    level = ProductRepository().decrement_stock("P1", 5)
    assert (level.stock_count, level.in_stock) == (0, False)
    p = ProductModel.objects.get(id="P1")
    assert p.stock_count == 0 and p.in_stock is False


@pytest.mark.django_db
def test_decrement_and_sync_of_missing_product_raise_lookup_error():
    with pytest.raises(LookupError):
        ProductRepository().decrement_stock("GONE", 1)
    with pytest.raises(LookupError):
        ProductRepository().sync_stock_flag("GONE")


@pytest.mark.django_db
def test_sync_flag_follows_count(make_product):
    make_product("P1", stock_count=3, in_stock=False)
    assert ProductRepository().sync_stock_flag("P1").in_stock is True


@pytest.mark.django_db
def test_fetch_products_skips_unknown_ids(make_product):
    make_product("P1", stock_count=3)
    found = ProductRepository().fetch_products(["P1", "NOPE", ""])
    assert list(found) == ["P1"]
    assert found["P1"].shipping_cost == Decimal("50.00")


@pytest.mark.django_db
def test_service_status_defaults_to_running_without_a_row():
    state = ServiceStatusRepository().current()
    assert state.stopped is False


@pytest.mark.django_db(transaction=True)
def test_concurrent_reservations_never_oversell(shopper, make_product):
    make_product("P1", stock_count=5, name="Gold Ring")
    start = threading.Barrier(2)
    outcomes = []

    def run():
        try:
            start.wait()
            OrderRepository().create(draft(shopper, ("P1", 3)), reserve_stock=True)
            outcomes.append("ok")
        except StockValidationError:
            outcomes.append("short")
        except DatabaseError:
            # sqlite refuses a second concurrent writer instead of queueing it
            outcomes.append("locked")
        finally:
            connections.close_all()

    threads = [threading.Thread(target=run) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(outcomes) == 2
    placed = OrderModel.objects.count()
    assert placed <= 1
    assert outcomes.count("ok") <= placed
    p = ProductModel.objects.get(id="P1")
    assert p.stock_count == 5 - 3 * placed
    assert p.in_stock is True
