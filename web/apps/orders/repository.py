"""Repository layer backed by the Django ORM.

These classes implement the domain ports for the catalog, the order store
and the service status record. They return domain dataclasses so the
checkout components never see ORM instances.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import BooleanField, Case, F, Prefetch, Value, When
from django.utils import timezone

from .domain import (
    AddressVerification,
    CatalogPort,
    CustomerDetails,
    OrderDraft,
    OrderStatus,
    OrderStorePort,
    PlacedOrder,
    PlacedOrderItem,
    ProductSnapshot,
    ServiceState,
    ServiceStatusPort,
    StockLevel,
    StockValidationError,
    StockViolation,
)
from .models import OrderItemModel, OrderModel, ProductModel, ServiceStatusModel


def _snapshot(p: ProductModel) -> ProductSnapshot:
    return ProductSnapshot(
        id=p.id,
        name=p.name,
        in_stock=p.in_stock,
        stock_count=p.stock_count,
        shipping_cost=p.shipping_cost,
    )


class ProductRepository(CatalogPort):
    """Catalog reads and stock writes."""

    def fetch_products(self, product_ids: Iterable[str]) -> Dict[str, ProductSnapshot]:
        ids = [pid for pid in product_ids if pid]
        return {p.id: _snapshot(p) for p in ProductModel.objects.filter(id__in=ids)}

    @transaction.atomic
    def decrement_stock(self, product_id: str, quantity: int) -> StockLevel:
        """Subtract ``quantity`` from the stock, never going below zero.

        The row is locked for the read-modify-write so two reconciliations of
        the same product do not overwrite each other.

        Raises:
            LookupError: If the product no longer exists.
        """
        try:
            p = ProductModel.objects.select_for_update().get(id=product_id)
        except ProductModel.DoesNotExist:
            raise LookupError(product_id)
        p.stock_count = max(0, p.stock_count - quantity)
        p.in_stock = p.stock_count > 0
        p.save(update_fields=["stock_count", "in_stock", "updated_at"])
        return StockLevel(product_id=p.id, stock_count=p.stock_count, in_stock=p.in_stock)

    def sync_stock_flag(self, product_id: str) -> StockLevel:
        """Make ``in_stock`` agree with the committed ``stock_count``."""
        ProductModel.objects.filter(id=product_id).update(
            in_stock=Case(When(stock_count__gt=0, then=Value(True)), default=Value(False), output_field=BooleanField())
        )
        try:
            p = ProductModel.objects.only("id", "stock_count", "in_stock").get(id=product_id)
        except ProductModel.DoesNotExist:
            raise LookupError(product_id)
        return StockLevel(product_id=p.id, stock_count=p.stock_count, in_stock=p.in_stock)


def _reserve(requested: Dict[str, int]) -> List[StockViolation]:
    """Take stock for every product with one conditional UPDATE each.

    Must run inside the caller's transaction. A product whose row does not
    have enough units is left untouched and reported; the caller rolls back.
    """
    violations: List[StockViolation] = []
    for product_id, qty in requested.items():
        updated = ProductModel.objects.filter(id=product_id, stock_count__gte=qty).update(
            # flag first: some backends evaluate SET clauses left to right
            in_stock=Case(When(stock_count__gt=qty, then=Value(True)), default=Value(False), output_field=BooleanField()),
            stock_count=F("stock_count") - qty,
        )
        if updated:
            continue
        current = ProductModel.objects.filter(id=product_id).values_list("name", "stock_count").first()
        if current is None:
            violations.append(StockViolation(product_id, f"Product {product_id} not found", requested=qty))
        else:
            name, available = current
            violations.append(StockViolation(
                product_id,
                f"Insufficient stock for {name}. Available: {available}, Requested: {qty}",
                requested=qty,
                available=available,
            ))
    return violations


def to_placed_order(o: OrderModel) -> PlacedOrder:
    """Map an order with prefetched ``items__product`` to the domain type."""
    items = [
        PlacedOrderItem(
            id=it.id,
            product_id=it.product_id,
            product_name=it.product.name if it.product else it.product_name,
            quantity=it.quantity,
            price=it.price,
            shipping_cost=it.product.shipping_cost if it.product else Decimal("0"),
        )
        for it in o.items.all()
    ]
    verification = None
    if o.address_verified or o.address_verification_method:
        verification = AddressVerification(verified=o.address_verified, method=o.address_verification_method)
    return PlacedOrder(
        id=str(o.id),
        user_id=o.user_id,
        total=o.total,
        status=OrderStatus(o.status),
        customer=CustomerDetails(
            name=o.customer_name,
            email=o.email,
            phone=o.phone,
            address_line1=o.address_line1,
            address_line2=o.address_line2,
            city=o.city,
            state=o.state,
            postal_code=o.postal_code,
        ),
        items=items,
        created_at=o.created_at,
        payment_id=o.payment_id,
        address_verification=verification,
    )


class OrderRepository(OrderStorePort):
    """Persists orders with their line items as one transaction."""

    def _with_items(self):
        return OrderModel.objects.prefetch_related(
            Prefetch("items", queryset=OrderItemModel.objects.select_related("product"))
        )

    def create(self, draft: OrderDraft, reserve_stock: bool = False) -> PlacedOrder:
        """Write the order header and items, optionally taking stock.

        Raises:
            StockValidationError: ``reserve_stock`` is set and a product no
                longer has enough units; nothing is written.
        """
        names = dict(
            ProductModel.objects.filter(id__in={ln.product_id for ln in draft.lines}).values_list("id", "name")
        )
        av = draft.address_verification
        c = draft.customer

        with transaction.atomic():
            if reserve_stock:
                violations = _reserve(draft.requested_quantities())
                if violations:
                    raise StockValidationError(violations)

            order = OrderModel.objects.create(
                user_id=draft.user_id,
                status=draft.status.value,
                total=draft.total,
                customer_name=c.name,
                email=c.email,
                phone=c.phone,
                address_line1=c.address_line1,
                address_line2=c.address_line2,
                city=c.city,
                state=c.state,
                postal_code=c.postal_code,
                address_verified=bool(av and av.verified),
                address_verification_method=av.method if av else None,
                address_verified_at=timezone.now() if av and av.verified else None,
                payment_id=draft.payment_id,
            )
            OrderItemModel.objects.bulk_create([
                OrderItemModel(
                    order=order,
                    product_id=ln.product_id,
                    product_name=names.get(ln.product_id, ln.product_id),
                    quantity=ln.quantity,
                    price=ln.price,
                )
                for ln in draft.lines
            ])

        return to_placed_order(self._with_items().get(id=order.id))

    def get(self, order_id) -> Optional[PlacedOrder]:
        o = self._with_items().filter(id=order_id).first()
        return to_placed_order(o) if o else None

    def for_user(self, user_id: int):
        """Queryset of a user's orders, newest first, items prefetched."""
        return self._with_items().filter(user_id=user_id).order_by("-created_at")


class ServiceStatusRepository(ServiceStatusPort):
    """Reads and updates the singleton service status row."""

    def _row(self) -> ServiceStatusModel:
        row, _ = ServiceStatusModel.objects.get_or_create(id=ServiceStatusModel.SINGLETON_ID)
        return row

    def current(self) -> ServiceState:
        row = ServiceStatusModel.objects.filter(id=ServiceStatusModel.SINGLETON_ID).first()
        if row is None:
            return ServiceState(stopped=False, message=ServiceStatusModel.DEFAULT_MESSAGE)
        return ServiceState(stopped=row.is_stopped, message=row.message)

    def get_or_create(self) -> ServiceStatusModel:
        return self._row()

    @transaction.atomic
    def set_stopped(self, stopped: bool, message: Optional[str], updated_by_id: Optional[int]) -> ServiceStatusModel:
        row = self._row()
        if stopped:
            row.stopped_at = row.stopped_at or timezone.now()
        else:
            row.stopped_at = None
        row.is_stopped = stopped
        row.message = message or row.message or ServiceStatusModel.DEFAULT_MESSAGE
        row.updated_by_id = updated_by_id
        row.save()
        return row
