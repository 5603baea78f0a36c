from decimal import Decimal

import pytest
from django.core.cache import cache

PAYMENT_SECRET = "test-gateway-secret"


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.INVOICE_EMAIL_ASYNC = False
    settings.CHECKOUT_RESERVE_STOCK = True
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.DEFAULT_FROM_EMAIL = "orders@shop.test"
    settings.PAYMENT_GATEWAY_KEY_ID = "rzp_test_key"
    settings.PAYMENT_GATEWAY_KEY_SECRET = PAYMENT_SECRET
    cache.clear()  # throttle counters
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def reset_circuit():
    from apps.orders.http_adapters import _gateway_cb

    # module-level breaker state would leak between tests
    _gateway_cb.on_success()
    yield
    _gateway_cb.on_success()


@pytest.fixture
def shopper(django_user_model):
    return django_user_model.objects.create_user(
        username="asha", email="asha@example.com", password="pw", first_name="Asha", last_name="Rao"
    )


@pytest.fixture
def staff(django_user_model):
    return django_user_model.objects.create_user(
        username="ops", email="ops@example.com", password="pw", is_staff=True
    )


@pytest.fixture
def shopper_client(client, shopper):
    client.force_login(shopper)
    return client


@pytest.fixture
def make_product(db):
    from apps.orders.models import ProductModel

    def _make(product_id="P1", stock_count=5, name="Gold Ring", shipping_cost="50.00", price="1000.00", in_stock=None):
        return ProductModel.objects.create(
            id=product_id,
            name=name,
            price=Decimal(price),
            shipping_cost=Decimal(shipping_cost),
            stock_count=stock_count,
            in_stock=stock_count > 0 if in_stock is None else in_stock,
        )

    return _make
