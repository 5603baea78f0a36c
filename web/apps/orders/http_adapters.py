"""HTTP client for the payment gateway with retries and a circuit breaker.

This module implements ``PaymentGatewayPort`` over ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    the gateway middleware.
- A circuit breaker so a failing gateway is not hammered, with HALF_OPEN
    probing after a timeout.
- A retry policy with exponential backoff for transport errors and 5xx.
"""

import logging
import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .domain import GatewayOrder, GatewayRejected, PaymentGatewayPort

logger = logging.getLogger("orders.http")


# ---------------- Circuit Breaker ---------------- #

class CircuitOpen(RuntimeError):
    pass


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when consecutive failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe, back to OPEN on failure.
      Only one probe may be in flight.

    Thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Return the state at call time.

        Raises:
            CircuitOpen: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen(f"{self.name}: CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._probe_in_flight:
                    raise CircuitOpen(f"{self.name}: CIRCUIT_HALF_OPEN_BUSY")
                self._probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._probe_in_flight = False


_gateway_cb = CircuitBreaker(
    "payment-gateway",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Base headers with ``X-Request-ID`` from the current request, plus extras."""
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return (max_retries, backoff_base_seconds, max_sleep_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
        getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    # Retry only on transport errors or 5xx
    if exc is not None:
        return True
    return resp is not None and 500 <= resp.status_code < 600


# ---------------- Payment gateway adapter ---------------- #

class HttpPaymentGatewayClient(PaymentGatewayPort):
    """Creates gateway orders over the gateway's REST API.

    Authenticates with HTTP basic auth (public key id, secret). Business
    mapping:
    - 2xx → ``GatewayOrder`` from the JSON body
    - 4xx → ``GatewayRejected``; not counted as a circuit failure
    """

    def __init__(self, base_url: str | None = None, key_id: str | None = None,
                 key_secret: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_BASE_URL).rstrip("/")
        self.key_id = key_id if key_id is not None else settings.PAYMENT_GATEWAY_KEY_ID
        self.key_secret = key_secret if key_secret is not None else settings.PAYMENT_GATEWAY_KEY_SECRET
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def create_order(self, amount_minor: int, currency: str, receipt: str, notes: Optional[dict] = None) -> GatewayOrder:
        """POST ``/v1/orders`` and return the created gateway order.

        Raises:
            GatewayRejected: On a 4xx answer.
            CircuitOpen: When the breaker refuses the call.
            httpx.RequestError: For transport errors after retries.
            httpx.HTTPStatusError: For 5xx after retries.
        """
        payload = {"amount": amount_minor, "currency": currency, "receipt": receipt, "notes": notes or {}}
        max_retries, backoff, cap = _retry_policy()
        tries = 0

        state = _gateway_cb.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})

        try:
            with httpx.Client(timeout=self.timeout, auth=(self.key_id or "", self.key_secret or "")) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.post(f"{self.base_url}/v1/orders", json=payload, headers=headers)
                        if 200 <= resp.status_code < 300:
                            _gateway_cb.on_success()
                            data = resp.json()
                            return GatewayOrder(
                                id=data["id"],
                                amount=int(data.get("amount", amount_minor)),
                                currency=data.get("currency", currency),
                                receipt=data.get("receipt", receipt),
                            )
                        if 400 <= resp.status_code < 500:
                            _gateway_cb.on_success()  # business outcome, not a circuit failure
                            raise GatewayRejected(resp.status_code, _error_detail(resp))
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries or not _should_retry(resp, exc):
                        _gateway_cb.on_failure()
                        logger.error(
                            "payment gateway unavailable",
                            extra={"tries": tries, "status": getattr(resp, "status_code", None), "error": str(exc or "")},
                        )
                        if exc:
                            raise exc
                        resp.raise_for_status()

                    time.sleep(min(backoff * (2 ** (tries - 1)), cap))
        finally:
            _gateway_cb.on_finish()


def _error_detail(resp) -> str:
    try:
        body = resp.json()
    except Exception:
        return ""
    err = body.get("error") if isinstance(body, dict) else None
    if isinstance(err, dict):
        return err.get("description") or err.get("code") or ""
    return str(err or "")
