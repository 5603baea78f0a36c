import uuid

from django.conf import settings
from django.db import models


def _product_id() -> str:
    return uuid.uuid4().hex


class ProductModel(models.Model):
    id = models.CharField(primary_key=True, max_length=64, default=_product_id, editable=False)
    name = models.CharField(max_length=200)
    price = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    shipping_cost = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    stock_count = models.PositiveIntegerField(default=0)
    # derived: stock_count > 0
    in_stock = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "products"
        constraints = [
            models.CheckConstraint(condition=models.Q(stock_count__gte=0), name="product_stock_non_negative"),
        ]

    def __str__(self):
        return self.name


class OrderModel(models.Model):
    # UUID PK exposed in the API
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.CASCADE, related_name="orders")

    class Status(models.TextChoices):
        PENDING = "PENDING"
        PROCESSING = "PROCESSING"
        SHIPPED = "SHIPPED"
        DELIVERED = "DELIVERED"
        CANCELLED = "CANCELLED"

    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    total = models.DecimalField(max_digits=12, decimal_places=2)

    # contact snapshot taken at checkout
    customer_name = models.CharField(max_length=200, default="Customer")
    email = models.EmailField(blank=True, null=True)
    phone = models.CharField(max_length=32, blank=True, default="")
    address_line1 = models.CharField(max_length=255, blank=True, default="")
    address_line2 = models.CharField(max_length=255, blank=True, null=True)
    city = models.CharField(max_length=100, blank=True, default="")
    state = models.CharField(max_length=100, blank=True, default="")
    postal_code = models.CharField(max_length=20, blank=True, default="")

    address_verified = models.BooleanField(default=False)
    address_verification_method = models.CharField(max_length=50, blank=True, null=True)
    address_verified_at = models.DateTimeField(blank=True, null=True)

    tracking_number = models.CharField(max_length=100, blank=True, null=True)
    tracking_carrier = models.CharField(max_length=100, blank=True, null=True)
    tracking_url = models.URLField(blank=True, null=True)
    shipped_at = models.DateTimeField(blank=True, null=True)
    delivered_at = models.DateTimeField(blank=True, null=True)

    payment_id = models.CharField(max_length=100, blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]


class OrderItemModel(models.Model):
    order = models.ForeignKey(OrderModel, on_delete=models.CASCADE, related_name="items")
    # products may be deleted later; name and price are snapshotted
    product = models.ForeignKey(ProductModel, on_delete=models.SET_NULL, null=True, related_name="+")
    product_name = models.CharField(max_length=200)
    quantity = models.PositiveIntegerField()
    price = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        db_table = "order_items"
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gt=0), name="order_item_quantity_positive"),
        ]


class ServiceStatusModel(models.Model):
    SINGLETON_ID = "service-status"
    DEFAULT_MESSAGE = "Our services are stopped today. Please check after 12 hours."

    id = models.CharField(primary_key=True, max_length=32, default=SINGLETON_ID, editable=False)
    is_stopped = models.BooleanField(default=False)
    message = models.TextField(default=DEFAULT_MESSAGE)
    stopped_at = models.DateTimeField(blank=True, null=True)
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "service_status"
