"""Pydantic schemas for the checkout API.

Request schemas validate incoming payloads and accept both the snake_case
field names and the camelCase names sent by the storefront client. Read
schemas shape the JSON returned to clients.
"""

import re
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, PlainSerializer, field_validator

from .domain import (
    AddressVerification,
    CartLine,
    CheckoutRequest,
    CustomerDetails,
    PaymentConfirmation,
    PlacedOrder,
    Shopper,
)

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")

# money leaves the API as a 2-decimal string, never a float
Money = Annotated[Decimal, PlainSerializer(lambda v: str(v.quantize(Decimal("0.01"))), return_type=str)]


def _alias(*names: str):
    return Field(default=None, validation_alias=AliasChoices(*names))


class _Inbound(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class CartLineIn(_Inbound):
    """A single cart line.

    Attributes:
        product_id: Non-empty product identifier.
        quantity: Positive integer number of units.
        price: Unit price the customer saw; persisted as-is.
    """

    product_id: str = Field(min_length=1, max_length=64, validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(gt=0)
    price: Decimal = Field(ge=0, max_digits=12, decimal_places=2)


class CustomerIn(_Inbound):
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=32)
    address_line1: Optional[str] = _alias("address_line1", "addressLine1")
    address_line2: Optional[str] = _alias("address_line2", "addressLine2")
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = _alias("postal_code", "postalCode")


class AddressVerificationIn(_Inbound):
    verified: bool = False
    method: Optional[str] = Field(default=None, max_length=50)


class CreateOrderDTO(_Inbound):
    """Checkout submission.

    An empty ``items`` list is accepted here and rejected by the checkout
    service as ``EMPTY_CART`` so the caller gets the domain error code.
    """

    items: list[CartLineIn] = Field(default_factory=list)
    total: Optional[Decimal] = Field(default=None, ge=0, max_digits=12, decimal_places=2)
    customer: Optional[CustomerIn] = None
    address_verification: Optional[AddressVerificationIn] = _alias("address_verification", "addressVerification")

    def to_request(self, shopper: Shopper) -> CheckoutRequest:
        c = self.customer or CustomerIn()
        av = self.address_verification
        return CheckoutRequest(
            shopper=shopper,
            lines=[CartLine(product_id=i.product_id, quantity=i.quantity, price=i.price) for i in self.items],
            total=self.total,
            customer=CustomerDetails(
                name=c.name or "",
                email=c.email or None,
                phone=c.phone or "",
                address_line1=c.address_line1 or "",
                address_line2=c.address_line2 or None,
                city=c.city or "",
                state=c.state or "",
                postal_code=c.postal_code or "",
            ),
            address_verification=AddressVerification(verified=av.verified, method=av.method) if av else None,
        )


class VerifyPaymentDTO(CreateOrderDTO):
    """Post-payment submission: gateway identifiers plus the cart."""

    gateway_order_id: str = Field(
        min_length=1, validation_alias=AliasChoices("gateway_order_id", "gatewayOrderId", "razorpay_order_id")
    )
    gateway_payment_id: str = Field(
        min_length=1, validation_alias=AliasChoices("gateway_payment_id", "gatewayPaymentId", "razorpay_payment_id")
    )
    signature: str = Field(
        min_length=1, validation_alias=AliasChoices("signature", "razorpay_signature")
    )

    def confirmation(self) -> PaymentConfirmation:
        return PaymentConfirmation(
            gateway_order_id=self.gateway_order_id,
            gateway_payment_id=self.gateway_payment_id,
            signature=self.signature,
        )


class CreatePaymentOrderDTO(_Inbound):
    """Request to open a gateway order; ``amount`` is in major units."""

    amount: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    currency: str = Field(default="INR", min_length=3, max_length=3)
    receipt: Optional[str] = Field(default=None, max_length=40)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        """Normalize to uppercase and require a 3-letter code."""
        v2 = v.upper()
        if not CURRENCY_RE.match(v2):
            raise ValueError("Invalid currency code")
        return v2

    def amount_minor(self) -> int:
        return int((self.amount * 100).to_integral_value())


class ServiceStatusUpdateDTO(_Inbound):
    is_stopped: bool = Field(validation_alias=AliasChoices("is_stopped", "isStopped"), strict=True)
    message: Optional[str] = Field(default=None, max_length=500)


# ---- Read models ----

class ProductRefDTO(BaseModel):
    id: Optional[str]
    name: str
    shipping_cost: Money


class OrderItemReadDTO(BaseModel):
    id: int
    product_id: Optional[str]
    product: ProductRefDTO
    quantity: int
    price: Money


class OrderReadDTO(BaseModel):
    id: UUID
    status: str
    total: Money
    customer_name: str
    email: Optional[str] = None
    phone: str = ""
    address_line1: str = ""
    address_line2: Optional[str] = None
    city: str = ""
    state: str = ""
    postal_code: str = ""
    address_verified: bool = False
    address_verification_method: Optional[str] = None
    payment_id: Optional[str] = None
    created_at: datetime
    items: list[OrderItemReadDTO]

    @classmethod
    def from_order(cls, order: PlacedOrder) -> "OrderReadDTO":
        c = order.customer
        av = order.address_verification
        return cls(
            id=order.id,
            status=order.status.value,
            total=order.total,
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
            payment_id=order.payment_id,
            created_at=order.created_at,
            items=[
                OrderItemReadDTO(
                    id=it.id,
                    product_id=it.product_id,
                    product=ProductRefDTO(id=it.product_id, name=it.product_name, shipping_cost=it.shipping_cost),
                    quantity=it.quantity,
                    price=it.price,
                )
                for it in order.items
            ],
        )
