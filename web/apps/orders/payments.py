"""Payment gateway signature verification.

After the customer pays on the gateway's hosted page, the client posts back
the gateway order id, payment id and a signature. The signature is an
HMAC-SHA256 over ``"<order_id>|<payment_id>"`` keyed with the merchant
secret; nothing about the payment is trusted until it matches.
"""

import hashlib
import hmac
import logging
from typing import Optional

from .domain import PaymentConfirmation, PaymentSignatureError

logger = logging.getLogger("orders.payments")


def compute_signature(secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    """Return the hex HMAC-SHA256 digest the gateway would send for this pair."""
    body = f"{gateway_order_id}|{gateway_payment_id}"
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


class PaymentSignatureVerifier:
    """Checks gateway signatures against the server-held shared secret."""

    def __init__(self, secret: Optional[str]):
        self._secret = secret

    def verify(self, confirmation: PaymentConfirmation) -> None:
        """Raise unless ``confirmation.signature`` is authentic.

        Raises:
            PaymentSignatureError: ``PAYMENT_SECRET_MISSING`` when no secret is
                configured, ``INVALID_PAYMENT_SIGNATURE`` on any mismatch.
        """
        if not self._secret:
            logger.error("payment secret not configured; refusing verification")
            raise PaymentSignatureError("PAYMENT_SECRET_MISSING")

        if not (confirmation.gateway_order_id and confirmation.gateway_payment_id and confirmation.signature):
            raise PaymentSignatureError()

        expected = compute_signature(
            self._secret, confirmation.gateway_order_id, confirmation.gateway_payment_id
        )
        if not hmac.compare_digest(expected.encode("ascii"), confirmation.signature.encode("utf-8")):
            logger.warning(
                "payment signature mismatch",
                extra={"gateway_order_id": confirmation.gateway_order_id},
            )
            raise PaymentSignatureError()
