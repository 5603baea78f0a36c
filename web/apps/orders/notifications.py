"""Best-effort invoice email delivery.

The invoice is sent after the order is committed. Nothing in here may raise
into the checkout: every failure is logged and returned as an
``InvoiceOutcome`` so the response can report it while the order stands.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.mail import EmailMultiAlternatives
from django.core.validators import validate_email
from django.utils.html import strip_tags

from .domain import InvoiceOutcome, InvoiceStatus, MailerPort, PlacedOrder, SendResult
from .invoice import invoice_subject, render_invoice, summarize

logger = logging.getLogger("orders.notifications")

_executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="invoice-mail")


class _Backlog:
    """Counts invoices handed to the executor but not yet finished."""

    def __init__(self):
        self._lock = threading.Lock()
        self.pending = 0

    def try_acquire(self, limit: int) -> bool:
        with self._lock:
            if self.pending >= limit:
                return False
            self.pending += 1
            return True

    def release(self, _future=None) -> None:
        with self._lock:
            self.pending -= 1


_backlog = _Backlog()


class DjangoMailer(MailerPort):
    """Mail transport backed by Django's configured email backend."""

    def __init__(self, from_email: Optional[str] = None):
        self.from_email = from_email or settings.DEFAULT_FROM_EMAIL

    def send(self, to: str, subject: str, html: str) -> SendResult:
        msg = EmailMultiAlternatives(subject, strip_tags(html), self.from_email, [to])
        msg.attach_alternative(html, "text/html")
        try:
            msg.send(fail_silently=False)
        except Exception as e:
            logger.error("email send failed", extra={"to": to, "subject": subject, "error": str(e)})
            return SendResult(success=False, error=str(e) or e.__class__.__name__)
        return SendResult(success=True)


def resolve_recipient(candidates: Iterable[Optional[str]]) -> Optional[str]:
    """Return the first candidate that is a syntactically valid address."""
    for candidate in candidates:
        if not candidate:
            continue
        address = candidate.strip()
        try:
            validate_email(address)
        except ValidationError:
            continue
        return address
    return None


class InvoiceDispatcher:
    """Renders and sends the invoice for a placed order.

    Args:
        mailer: Transport used to deliver the email.
        company: Seller block printed on the invoice.
        tax_rate: Rate applied to the subtotal (defaults to 3%).
        background: When True, delivery is handed to a worker thread and
            ``dispatch`` returns a ``queued`` outcome immediately. Once
            ``INVOICE_EMAIL_MAX_PENDING`` deliveries are waiting, new ones are
            refused with a ``failed`` outcome instead of piling up.
    """

    def __init__(
        self,
        mailer: MailerPort,
        company: Optional[Mapping[str, str]] = None,
        tax_rate: Optional[Decimal] = None,
        background: bool = False,
    ):
        self.mailer = mailer
        self.company = company or {}
        self.tax_rate = tax_rate
        self.background = background

    def dispatch(self, order: PlacedOrder, fallback_emails: Iterable[Optional[str]] = ()) -> InvoiceOutcome:
        """Send the invoice to the best available address.

        The order's own email wins, then each fallback in the given order
        (request payload, then authenticated session).
        """
        recipient = resolve_recipient([order.customer.email, *fallback_emails])
        if recipient is None:
            logger.info("invoice skipped: no valid recipient", extra={"order_id": order.id})
            return InvoiceOutcome(InvoiceStatus.SKIPPED)

        if self.background:
            limit = getattr(settings, "INVOICE_EMAIL_MAX_PENDING", 100)
            if not _backlog.try_acquire(limit):
                logger.error(
                    "invoice backlog full, not queued",
                    extra={"order_id": order.id, "to": recipient, "pending": _backlog.pending},
                )
                return InvoiceOutcome(InvoiceStatus.FAILED, recipient=recipient, error="INVOICE_BACKLOG_FULL")
            future = _executor.submit(self.deliver, order, recipient)
            future.add_done_callback(_backlog.release)
            future.add_done_callback(self._log_background_failure)
            return InvoiceOutcome(InvoiceStatus.QUEUED, recipient=recipient)
        return self.deliver(order, recipient)

    def deliver(self, order: PlacedOrder, recipient: str) -> InvoiceOutcome:
        try:
            summary = summarize(order, self.tax_rate)
            html = render_invoice(order, summary, self.company)
            result = self.mailer.send(recipient, invoice_subject(summary, self.company), html)
        except Exception as e:
            logger.exception("invoice rendering or delivery crashed", extra={"order_id": order.id, "to": recipient})
            return InvoiceOutcome(InvoiceStatus.FAILED, recipient=recipient, error=str(e))

        if not result.success:
            logger.error(
                "invoice not delivered",
                extra={"order_id": order.id, "to": recipient, "error": result.error},
            )
            return InvoiceOutcome(InvoiceStatus.FAILED, recipient=recipient, error=result.error)

        logger.info("invoice sent", extra={"order_id": order.id, "to": recipient})
        return InvoiceOutcome(InvoiceStatus.SENT, recipient=recipient)

    @staticmethod
    def _log_background_failure(future: Future) -> None:
        exc = future.exception()
        if exc is not None:
            logger.error("background invoice task failed", extra={"error": str(exc)})
