"""Checkout orchestration.

The components here run in a fixed order for every submission::

    ServiceGate -> StockValidator -> OrderStore -> StockReconciler -> InvoiceDispatcher

with ``PaymentSignatureVerifier`` inserted before the validator on the
verified-payment path. Gate, validation, signature and persistence failures
abort the request; reconciliation and invoice failures happen after the order
is committed and are only logged and reported.
"""

import logging
from typing import Iterable, List, Optional

from .domain import (
    CatalogPort,
    CheckoutRequest,
    CheckoutResult,
    CustomerDetails,
    EmptyCart,
    OrderDraft,
    OrderPersistenceError,
    OrderStatus,
    OrderStorePort,
    PaymentConfirmation,
    PaymentSignatureError,
    PlacedOrderItem,
    ServiceStatusPort,
    ServiceUnavailable,
    StockSyncReport,
    StockValidationError,
    StockViolation,
)
from .notifications import InvoiceDispatcher
from .payments import PaymentSignatureVerifier

logger = logging.getLogger("orders.checkout")


class ServiceGate:
    """Rejects checkouts while the operator has stopped the service."""

    def __init__(self, status: ServiceStatusPort):
        self.status = status

    def check(self) -> None:
        state = self.status.current()
        if state.stopped:
            logger.info("checkout rejected: service stopped")
            raise ServiceUnavailable(state.message)


class StockValidator:
    """Collects every stock violation of a cart against one catalog read."""

    def __init__(self, catalog: CatalogPort):
        self.catalog = catalog

    def validate(self, request: CheckoutRequest) -> List[StockViolation]:
        """Check each line, in input order, against current stock.

        Lines referencing the same product are checked against the running
        total requested for that product so far.

        Returns:
            list[StockViolation]: Empty when the cart can be fulfilled.
        """
        products = self.catalog.fetch_products({line.product_id for line in request.lines})
        violations: List[StockViolation] = []
        requested = {}

        for line in request.lines:
            wanted = requested.get(line.product_id, 0) + line.quantity
            requested[line.product_id] = wanted
            product = products.get(line.product_id)

            if product is None:
                violations.append(StockViolation(
                    product_id=line.product_id,
                    reason=f"Product {line.product_id} not found",
                    requested=wanted,
                ))
            elif not product.in_stock:
                violations.append(StockViolation(
                    product_id=product.id,
                    reason=f"{product.name} is out of stock",
                    requested=wanted,
                    available=product.stock_count,
                ))
            elif product.stock_count < wanted:
                violations.append(StockViolation(
                    product_id=product.id,
                    reason=(
                        f"Insufficient stock for {product.name}. "
                        f"Available: {product.stock_count}, Requested: {wanted}"
                    ),
                    requested=wanted,
                    available=product.stock_count,
                ))
        return violations


class StockReconciler:
    """Brings product stock in line with a committed order, item by item.

    ``reserved=True`` means the order store already took the units inside
    the order transaction; only the ``in_stock`` flag is re-synced. Otherwise
    each item's quantity is subtracted here (floored at zero).
    """

    def __init__(self, catalog: CatalogPort):
        self.catalog = catalog

    def reconcile(self, items: Iterable[PlacedOrderItem], reserved: bool) -> StockSyncReport:
        report = StockSyncReport()
        for item in items:
            if item.product_id is None:
                continue
            try:
                if reserved:
                    level = self.catalog.sync_stock_flag(item.product_id)
                else:
                    level = self.catalog.decrement_stock(item.product_id, item.quantity)
            except Exception:
                # the order stands; a stale counter is repaired by catalog management
                logger.exception(
                    "stock update failed",
                    extra={"product_id": item.product_id, "quantity": item.quantity},
                )
                report.failed.append(item.product_id)
                continue
            report.levels.append(level)
        return report


class CheckoutService:
    """Domain service turning a cart into a persisted order.

    The service holds no framework state; every collaborator is injected so
    tests can drive each failure mode with in-process stubs.
    """

    def __init__(
        self,
        status: ServiceStatusPort,
        catalog: CatalogPort,
        orders: OrderStorePort,
        dispatcher: InvoiceDispatcher,
        verifier: Optional[PaymentSignatureVerifier] = None,
        reserve_stock: bool = True,
    ):
        self.gate = ServiceGate(status)
        self.validator = StockValidator(catalog)
        self.reconciler = StockReconciler(catalog)
        self.orders = orders
        self.dispatcher = dispatcher
        self.verifier = verifier
        self.reserve_stock = reserve_stock

    def place_order(self, request: CheckoutRequest) -> CheckoutResult:
        """Run the direct checkout path and return the placed order.

        Raises:
            ServiceUnavailable: The service-stop flag is set.
            EmptyCart: The cart has no lines.
            StockValidationError: At least one line cannot be fulfilled.
            OrderPersistenceError: The order could not be written.
        """
        self.gate.check()
        return self._fulfil(request, OrderStatus.PENDING, payment_id=None)

    def place_paid_order(self, payment: PaymentConfirmation, request: CheckoutRequest) -> CheckoutResult:
        """Verify the gateway signature, then run checkout as PROCESSING.

        Raises:
            PaymentSignatureError: Missing secret or signature mismatch. No
                order is created.
            plus everything ``place_order`` raises.
        """
        self.gate.check()
        if self.verifier is None:
            raise PaymentSignatureError("PAYMENT_SECRET_MISSING")
        self.verifier.verify(payment)
        return self._fulfil(request, OrderStatus.PROCESSING, payment_id=payment.gateway_payment_id)

    def _fulfil(self, request: CheckoutRequest, status: OrderStatus, payment_id: Optional[str]) -> CheckoutResult:
        if not request.lines:
            raise EmptyCart()

        violations = self.validator.validate(request)
        if violations:
            logger.info(
                "checkout rejected: stock",
                extra={"user_id": request.shopper.user_id, "violations": [v.as_dict() for v in violations]},
            )
            raise StockValidationError(violations)

        draft = OrderDraft(
            user_id=request.shopper.user_id,
            lines=list(request.lines),
            total=request.resolved_total(),
            customer=self._snapshot_customer(request),
            status=status,
            address_verification=request.address_verification,
            payment_id=payment_id,
        )
        try:
            order = self.orders.create(draft, reserve_stock=self.reserve_stock)
        except StockValidationError:
            logger.warning("checkout lost stock race", extra={"user_id": request.shopper.user_id})
            raise
        except Exception as exc:
            logger.exception("order persistence failed", extra={"user_id": request.shopper.user_id})
            raise OrderPersistenceError() from exc

        logger.info(
            "order created",
            extra={"order_id": order.id, "items": len(order.items), "total": str(order.total)},
        )

        stock = self.reconciler.reconcile(order.items, reserved=self.reserve_stock)
        invoice = self.dispatcher.dispatch(
            order, fallback_emails=[request.customer.email, request.shopper.email]
        )
        return CheckoutResult(order=order, stock=stock, invoice=invoice)

    @staticmethod
    def _snapshot_customer(request: CheckoutRequest) -> CustomerDetails:
        given = request.customer
        return CustomerDetails(
            name=given.name or request.shopper.name or "Customer",
            email=given.email or request.shopper.email,
            phone=given.phone or "",
            address_line1=given.address_line1 or "",
            address_line2=given.address_line2 or None,
            city=given.city or "",
            state=given.state or "",
            postal_code=given.postal_code or "",
        )
