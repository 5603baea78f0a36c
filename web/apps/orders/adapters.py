"""In-process stub adapters for the checkout ports.

These stubs implement the catalog, order store, service status, mail and
payment gateway ports without a database or network. They are used by unit
tests and by local development when ``USE_HTTP_ADAPTERS`` is off.
"""

import itertools
import threading
import time
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from .domain import (
    CatalogPort,
    GatewayOrder,
    MailerPort,
    OrderDraft,
    OrderStorePort,
    PaymentGatewayPort,
    PlacedOrder,
    PlacedOrderItem,
    ProductSnapshot,
    SendResult,
    ServiceState,
    ServiceStatusPort,
    StockLevel,
    StockValidationError,
    StockViolation,
)


class StaticServiceStatus(ServiceStatusPort):
    """Service status that reports whatever it was built with."""

    def __init__(self, stopped: bool = False, message: str = ""):
        self.state = ServiceState(stopped=stopped, message=message)

    def current(self) -> ServiceState:
        return self.state


class InMemoryCatalog(CatalogPort):
    """Product store kept in a dict and guarded by a lock.

    The lock is shared with ``InMemoryOrderStore`` so reservation and order
    creation form one critical section, like a database transaction.
    """

    def __init__(self, products: Iterable[ProductSnapshot] = ()):
        self.lock = threading.RLock()
        self.products: Dict[str, ProductSnapshot] = {p.id: p for p in products}

    def add(self, product_id: str, stock_count: int, name: Optional[str] = None,
            shipping_cost: Decimal = Decimal("0"), in_stock: Optional[bool] = None) -> ProductSnapshot:
        p = ProductSnapshot(
            id=product_id,
            name=name or product_id,
            in_stock=stock_count > 0 if in_stock is None else in_stock,
            stock_count=stock_count,
            shipping_cost=shipping_cost,
        )
        with self.lock:
            self.products[product_id] = p
        return p

    def fetch_products(self, product_ids: Iterable[str]) -> Dict[str, ProductSnapshot]:
        with self.lock:
            return {pid: self.products[pid] for pid in product_ids if pid in self.products}

    def decrement_stock(self, product_id: str, quantity: int) -> StockLevel:
        with self.lock:
            p = self.products.get(product_id)
            if p is None:
                raise LookupError(product_id)
            left = max(0, p.stock_count - quantity)
            self.products[product_id] = replace(p, stock_count=left, in_stock=left > 0)
            return StockLevel(product_id, left, left > 0)

    def sync_stock_flag(self, product_id: str) -> StockLevel:
        with self.lock:
            p = self.products.get(product_id)
            if p is None:
                raise LookupError(product_id)
            self.products[product_id] = replace(p, in_stock=p.stock_count > 0)
            return StockLevel(product_id, p.stock_count, p.stock_count > 0)

    def take(self, requested: Dict[str, int]) -> List[StockViolation]:
        """All-or-nothing conditional decrement; caller must hold ``lock``."""
        violations = []
        for pid, qty in requested.items():
            p = self.products.get(pid)
            if p is None:
                violations.append(StockViolation(pid, f"Product {pid} not found", requested=qty))
            elif p.stock_count < qty:
                violations.append(StockViolation(
                    pid,
                    f"Insufficient stock for {p.name}. Available: {p.stock_count}, Requested: {qty}",
                    requested=qty,
                    available=p.stock_count,
                ))
        if violations:
            return violations
        for pid, qty in requested.items():
            p = self.products[pid]
            left = p.stock_count - qty
            self.products[pid] = replace(p, stock_count=left, in_stock=left > 0)
        return []


class InMemoryOrderStore(OrderStorePort):
    """Order store kept in a dict; pairs with an ``InMemoryCatalog``."""

    def __init__(self, catalog: InMemoryCatalog):
        self.catalog = catalog
        self.orders: Dict[str, PlacedOrder] = {}
        self._item_ids = itertools.count(1)

    def create(self, draft: OrderDraft, reserve_stock: bool = False) -> PlacedOrder:
        with self.catalog.lock:
            if reserve_stock:
                violations = self.catalog.take(draft.requested_quantities())
                if violations:
                    raise StockValidationError(violations)

            items = []
            for ln in draft.lines:
                product = self.catalog.products.get(ln.product_id)
                items.append(PlacedOrderItem(
                    id=next(self._item_ids),
                    product_id=ln.product_id,
                    product_name=product.name if product else ln.product_id,
                    quantity=ln.quantity,
                    price=ln.price,
                    shipping_cost=product.shipping_cost if product else Decimal("0"),
                ))
            order = PlacedOrder(
                id=str(uuid.uuid4()),
                user_id=draft.user_id,
                total=draft.total,
                status=draft.status,
                customer=draft.customer,
                items=items,
                created_at=datetime.now(timezone.utc),
                payment_id=draft.payment_id,
                address_verification=draft.address_verification,
            )
            self.orders[order.id] = order
            return order


class RecordingMailer(MailerPort):
    """Mailer that records messages instead of sending them.

    ``fail_with`` makes every send report that error.
    """

    def __init__(self, fail_with: Optional[str] = None):
        self.fail_with = fail_with
        self.sent: List[Tuple[str, str, str]] = []

    def send(self, to: str, subject: str, html: str) -> SendResult:
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        self.sent.append((to, subject, html))
        return SendResult(success=True)


class PaymentGatewayStub(PaymentGatewayPort):
    """Gateway that approves every order with a generated id."""

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Optional[dict] = None) -> GatewayOrder:
        if amount_minor <= 0:
            raise ValueError("INVALID_AMOUNT")
        return GatewayOrder(
            id=f"order_{uuid.uuid4().hex[:14]}",
            amount=amount_minor,
            currency=currency,
            receipt=receipt or f"receipt_{int(time.time() * 1000)}",
        )
