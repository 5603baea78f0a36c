"""Invoice figures and HTML rendering for placed orders.

Line prices are the purchase-time snapshots stored on the order items, so
an invoice can be rebuilt at any time without consulting the live catalog.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional

from django.template.loader import render_to_string

from .domain import PlacedOrder

logger = logging.getLogger("orders.invoice")

CENT = Decimal("0.01")
DEFAULT_TAX_RATE = Decimal("0.03")


@dataclass(frozen=True)
class InvoiceSummary:
    """Money roll-up shown at the bottom of an invoice.

    Attributes:
        number: Human-facing invoice number (``#`` + last 8 id chars).
        subtotal: Sum of ``price * quantity`` over the items.
        shipping: Sum of each item's product shipping cost times quantity.
        tax: ``subtotal * tax_rate`` rounded to cents.
        making_cost: Residual ``total - (subtotal + shipping + tax)``,
            floored at zero.
        total: Order total as persisted.
    """

    number: str
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    making_cost: Decimal
    total: Decimal
    tax_rate: Decimal = DEFAULT_TAX_RATE


def _cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def invoice_number(order_id: str) -> str:
    return "#" + order_id.replace("-", "")[-8:].upper()


def summarize(order: PlacedOrder, tax_rate: Optional[Decimal] = None) -> InvoiceSummary:
    rate = DEFAULT_TAX_RATE if tax_rate is None else Decimal(str(tax_rate))
    subtotal = sum((it.subtotal for it in order.items), Decimal("0"))
    shipping = sum((it.shipping_cost * it.quantity for it in order.items), Decimal("0"))
    tax = _cents(subtotal * rate)
    residual = _cents(order.total - (subtotal + shipping + tax))
    if residual < 0:
        logger.warning(
            "order total below itemised charges",
            extra={"order_id": order.id, "total": str(order.total), "shortfall": str(-residual)},
        )
    return InvoiceSummary(
        number=invoice_number(order.id),
        subtotal=subtotal,
        shipping=shipping,
        tax=tax,
        making_cost=max(Decimal("0"), residual),
        total=order.total,
        tax_rate=rate,
    )


def format_inr(value: Decimal) -> str:
    """Format an amount the way en-IN does: ``₹1,08,999.5``.

    Up to two fraction digits are kept and trailing zeros dropped.
    """
    amount = _cents(Decimal(value))
    sign = "-" if amount < 0 else ""
    whole, _, frac = f"{abs(amount):.2f}".partition(".")
    frac = frac.rstrip("0")

    head, tail = whole[:-3], whole[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    grouped = ",".join(groups + [tail])

    return f"{sign}₹{grouped}" + (f".{frac}" if frac else "")


def invoice_subject(summary: InvoiceSummary, company: Mapping[str, str]) -> str:
    return f"Invoice {summary.number} - {company.get('name', '')}".rstrip(" -")


def render_invoice(order: PlacedOrder, summary: InvoiceSummary, company: Mapping[str, str]) -> str:
    """Render the HTML invoice email body."""
    c = order.customer
    address_lines = [
        c.address_line1,
        c.address_line2,
        ", ".join(part for part in (c.city, c.state, c.postal_code) if part),
    ]
    rows = [
        {
            "name": it.product_name,
            "price": format_inr(it.price),
            "quantity": it.quantity,
            "total": format_inr(it.subtotal),
        }
        for it in order.items
    ]
    context = {
        "company": company,
        "number": summary.number,
        "created_at": order.created_at,
        "customer_name": c.name or "Customer",
        "phone": c.phone,
        "address_lines": [line for line in address_lines if line],
        "paid": order.payment_id is not None,
        "rows": rows,
        "subtotal": format_inr(summary.subtotal),
        "making_cost": format_inr(summary.making_cost),
        "shipping": format_inr(summary.shipping),
        "tax": format_inr(summary.tax),
        "tax_percent": f"{(summary.tax_rate * 100).normalize():f}",
        "total": format_inr(summary.total),
    }
    return render_to_string("orders/invoice_email.html", context)
