"""Service provider helpers for wiring the checkout with its ports.

Views never construct collaborators themselves; they call the factories
below, which read Django settings on every call. Tests patch these symbols
(or the settings) to swap in stubs without touching view logic.
"""

from decimal import Decimal

from django.conf import settings

from .adapters import PaymentGatewayStub
from .checkout import CheckoutService
from .domain import PaymentGatewayPort
from .http_adapters import HttpPaymentGatewayClient
from .notifications import DjangoMailer, InvoiceDispatcher
from .payments import PaymentSignatureVerifier
from .repository import OrderRepository, ProductRepository, ServiceStatusRepository


def get_invoice_dispatcher() -> InvoiceDispatcher:
    return InvoiceDispatcher(
        mailer=DjangoMailer(),
        company=getattr(settings, "INVOICE_COMPANY", {}),
        tax_rate=Decimal(str(getattr(settings, "INVOICE_TAX_RATE", "0.03"))),
        background=getattr(settings, "INVOICE_EMAIL_ASYNC", True),
    )


def get_signature_verifier() -> PaymentSignatureVerifier:
    return PaymentSignatureVerifier(getattr(settings, "PAYMENT_GATEWAY_KEY_SECRET", None))


def get_checkout_service() -> CheckoutService:
    """Return a ``CheckoutService`` wired to the ORM-backed repositories."""
    catalog = ProductRepository()
    return CheckoutService(
        status=ServiceStatusRepository(),
        catalog=catalog,
        orders=OrderRepository(),
        dispatcher=get_invoice_dispatcher(),
        verifier=get_signature_verifier(),
        reserve_stock=getattr(settings, "CHECKOUT_RESERVE_STOCK", True),
    )


def get_payment_gateway() -> PaymentGatewayPort:
    """HTTP gateway client when ``USE_HTTP_ADAPTERS`` is on, else the stub."""
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpPaymentGatewayClient()
    return PaymentGatewayStub()
