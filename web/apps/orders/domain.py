"""Domain models, errors and ports for the checkout flow.

This module contains the dataclasses used as DTOs between the HTTP layer and
the checkout components, the error taxonomy raised by those components, and
the protocol definitions (ports) for the collaborators the checkout depends
on: service status, catalog, order store and mail transport.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Lifecycle of a persisted order.

    Orders start as PENDING on the direct checkout path and as PROCESSING on
    the verified-payment path. CANCELLED is reachable from any non-terminal
    state; the transitions themselves are owned by the admin flow.
    """

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"
    QUEUED = "queued"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartLine:
    """A single line submitted at checkout.

    Attributes:
        product_id: Identifier of the referenced product.
        quantity: Units requested, at least 1.
        price: Unit price as submitted by the client. It is persisted as the
            price at time of purchase and never re-read from the catalog.
    """

    product_id: str
    quantity: int
    price: Decimal

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class CustomerDetails:
    """Delivery/contact snapshot stored on the order."""

    name: str = ""
    email: Optional[str] = None
    phone: str = ""
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""


@dataclass(frozen=True)
class AddressVerification:
    verified: bool = False
    method: Optional[str] = None


@dataclass(frozen=True)
class Shopper:
    """Authenticated identity placing the order."""

    user_id: int
    name: str = ""
    email: Optional[str] = None


@dataclass
class CheckoutRequest:
    """Everything the checkout needs from one submission.

    Attributes:
        shopper: Authenticated identity placing the order.
        lines: Cart lines in submission order.
        total: Client-supplied total, or None to recompute from the lines.
        customer: Client-supplied contact fields (may be partially empty).
        address_verification: Optional verification metadata.
    """

    shopper: Shopper
    lines: List[CartLine]
    total: Optional[Decimal] = None
    customer: CustomerDetails = field(default_factory=CustomerDetails)
    address_verification: Optional[AddressVerification] = None

    def lines_subtotal(self) -> Decimal:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    def resolved_total(self) -> Decimal:
        if self.total is not None and self.total > 0:
            return self.total
        return self.lines_subtotal()


@dataclass(frozen=True)
class PaymentConfirmation:
    """Identifiers returned by the payment gateway after redirect."""

    gateway_order_id: str
    gateway_payment_id: str
    signature: str


@dataclass
class OrderDraft:
    """Validated order ready for persistence."""

    user_id: int
    lines: List[CartLine]
    total: Decimal
    customer: CustomerDetails
    status: OrderStatus = OrderStatus.PENDING
    address_verification: Optional[AddressVerification] = None
    payment_id: Optional[str] = None

    def requested_quantities(self) -> Dict[str, int]:
        """Total units requested per product, across duplicate lines."""
        out: Dict[str, int] = {}
        for line in self.lines:
            out[line.product_id] = out.get(line.product_id, 0) + line.quantity
        return out


@dataclass(frozen=True)
class ProductSnapshot:
    id: str
    name: str
    in_stock: bool
    stock_count: int
    shipping_cost: Decimal = Decimal("0")


@dataclass(frozen=True)
class StockViolation:
    """Why a cart line cannot be fulfilled."""

    product_id: str
    reason: str
    requested: int
    available: Optional[int] = None

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "reason": self.reason,
            "requested": self.requested,
            "available": self.available,
        }


@dataclass(frozen=True)
class StockLevel:
    product_id: str
    stock_count: int
    in_stock: bool


@dataclass(frozen=True)
class PlacedOrderItem:
    id: int
    product_id: Optional[str]
    product_name: str
    quantity: int
    price: Decimal
    shipping_cost: Decimal = Decimal("0")

    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity


@dataclass
class PlacedOrder:
    """An order as materialized after persistence, items included."""

    id: str
    user_id: int
    total: Decimal
    status: OrderStatus
    customer: CustomerDetails
    items: List[PlacedOrderItem]
    created_at: datetime
    payment_id: Optional[str] = None
    address_verification: Optional[AddressVerification] = None


@dataclass(frozen=True)
class ServiceState:
    stopped: bool
    message: str = ""


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class InvoiceOutcome:
    status: InvoiceStatus
    recipient: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        return {"status": self.status.value, "recipient": self.recipient, "error": self.error}


@dataclass
class StockSyncReport:
    levels: List[StockLevel] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "levels": [
                {"product_id": lv.product_id, "stock_count": lv.stock_count, "in_stock": lv.in_stock}
                for lv in self.levels
            ],
            "failed": list(self.failed),
        }


@dataclass
class CheckoutResult:
    order: PlacedOrder
    stock: StockSyncReport
    invoice: InvoiceOutcome


# ---- Errors ----
class CheckoutError(ValueError):
    """Base class for checkout failures.

    ``str(exc)`` is always the short error code so callers can map it to a
    response without inspecting the subclass.
    """

    code = "CHECKOUT_FAILED"

    def __init__(self, code: Optional[str] = None):
        if code:
            self.code = code
        super().__init__(self.code)


class ServiceUnavailable(CheckoutError):
    code = "SERVICE_UNAVAILABLE"

    def __init__(self, message: str):
        self.message = message
        super().__init__()


class EmptyCart(CheckoutError):
    code = "EMPTY_CART"


class StockValidationError(CheckoutError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, violations: Iterable[StockViolation]):
        self.violations = list(violations)
        super().__init__()


class PaymentSignatureError(CheckoutError):
    code = "INVALID_PAYMENT_SIGNATURE"


class OrderPersistenceError(CheckoutError):
    code = "ORDER_NOT_CREATED"


# ---- Ports (DIP) ----
class ServiceStatusPort(Protocol):
    """Read access to the global service-stop flag."""

    def current(self) -> ServiceState:
        raise NotImplementedError()


class CatalogPort(Protocol):
    """Catalog store operations used by validation and reconciliation."""

    def fetch_products(self, product_ids: Iterable[str]) -> Dict[str, ProductSnapshot]:
        """Return the current snapshot of every existing product in one read."""
        raise NotImplementedError()

    def decrement_stock(self, product_id: str, quantity: int) -> StockLevel:
        """Re-read the product and store ``max(0, stock_count - quantity)``.

        Raises:
            LookupError: If the product no longer exists.
        """
        raise NotImplementedError()

    def sync_stock_flag(self, product_id: str) -> StockLevel:
        """Recompute ``in_stock`` from the committed ``stock_count``."""
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Atomic persistence of an order with its line items."""

    def create(self, draft: OrderDraft, reserve_stock: bool = False) -> PlacedOrder:
        """Persist header and items as one unit.

        When ``reserve_stock`` is True, the stock of every line is taken with
        a conditional decrement inside the same unit; if any product no longer
        has enough units nothing is written and ``StockValidationError`` is
        raised.
        """
        raise NotImplementedError()


class MailerPort(Protocol):
    """Email transport contract: send or report failure."""

    def send(self, to: str, subject: str, html: str) -> SendResult:
        raise NotImplementedError()


@dataclass(frozen=True)
class GatewayOrder:
    """Order created on the payment gateway ahead of the hosted checkout."""

    id: str
    amount: int
    currency: str
    receipt: str


class PaymentGatewayPort(Protocol):
    """Creates gateway-side orders the customer then pays against."""

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Optional[dict] = None) -> GatewayOrder:
        """Register an order of ``amount_minor`` (paise/cents) on the gateway.

        Raises:
            GatewayRejected: The gateway refused the request (4xx).
            httpx.RequestError: Transport failure after retries.
        """
        raise NotImplementedError()


class GatewayRejected(Exception):
    """The payment gateway answered with a client error."""

    def __init__(self, status_code: int, detail: str = ""):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"{status_code} {detail}".strip())
