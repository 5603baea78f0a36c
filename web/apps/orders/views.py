"""HTTP views for the checkout API.

Views are kept intentionally small: they validate requests (via Pydantic),
map them to domain DTOs, delegate to the checkout service obtained from
``providers``, and translate domain errors into HTTP responses:

- 503 ``SERVICE_UNAVAILABLE`` (with the operator ``message``) while the
  service is stopped.
- 400 for payload errors, ``EMPTY_CART`` and ``INVALID_PAYMENT_SIGNATURE``.
- 422 ``INSUFFICIENT_STOCK`` with every per-product ``violations`` entry.
- 500 ``ORDER_NOT_CREATED`` / ``PAYMENT_SECRET_MISSING``.

Invoice delivery and stock re-sync outcomes never change the status code of
a created order; they are reported under ``meta``.
"""

import logging
import time

import httpx
from django.conf import settings
from django.core.paginator import Paginator
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import (
    CheckoutError,
    CheckoutResult,
    GatewayRejected,
    PaymentSignatureError,
    ServiceUnavailable,
    Shopper,
    StockValidationError,
)
from .http_adapters import CircuitOpen
from .repository import OrderRepository, ServiceStatusRepository, to_placed_order
from .schemas import (
    CreateOrderDTO,
    CreatePaymentOrderDTO,
    OrderReadDTO,
    ServiceStatusUpdateDTO,
    VerifyPaymentDTO,
)

logger = logging.getLogger("orders.api")

ERROR_STATUS = {
    "EMPTY_CART": status.HTTP_400_BAD_REQUEST,
    "INVALID_PAYMENT_SIGNATURE": status.HTTP_400_BAD_REQUEST,
    "PAYMENT_SECRET_MISSING": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "ORDER_NOT_CREATED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def _shopper(user) -> Shopper:
    return Shopper(
        user_id=user.pk,
        name=user.get_full_name() or user.get_username(),
        email=user.email or None,
    )


def _validation_error(e: ValidationError) -> Response:
    errors = e.errors(include_url=False, include_context=False, include_input=False)
    return Response({"detail": "INVALID_PAYLOAD", "errors": errors}, status=status.HTTP_400_BAD_REQUEST)


def _checkout_error(e: CheckoutError) -> Response:
    code = str(e)
    if isinstance(e, ServiceUnavailable):
        return Response({"detail": code, "message": e.message}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
    if isinstance(e, StockValidationError):
        return Response(
            {"detail": code, "violations": [v.as_dict() for v in e.violations]},
            status=status.HTTP_422_UNPROCESSABLE_ENTITY,
        )
    return Response({"detail": code}, status=ERROR_STATUS.get(code, status.HTTP_400_BAD_REQUEST))


def _order_body(result: CheckoutResult) -> dict:
    body = OrderReadDTO.from_order(result.order).model_dump(mode="json")
    body["meta"] = {"invoice": result.invoice.as_dict(), "stock": result.stock.as_dict()}
    return body


class OrdersCollectionView(APIView):
    """List the caller's orders (GET) or check out a cart (POST)."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]

    def get_throttles(self):
        # DRF evaluates throttles in initial(), before get/post
        self.throttle_scope = "orders_list" if self.request.method == "GET" else "orders_create"
        return [throttle() for throttle in self.throttle_classes]

    def get(self, request):
        qs = OrderRepository().for_user(request.user.pk)
        try:
            page_size = min(max(int(request.GET.get("page_size", 20)), 1), 100)
        except ValueError:
            page_size = 20
        p = Paginator(qs, page_size)
        page_obj = p.get_page(request.GET.get("page", 1))

        results = [OrderReadDTO.from_order(to_placed_order(o)).model_dump(mode="json") for o in page_obj.object_list]
        return Response(
            {"count": p.count, "page": page_obj.number, "page_size": page_size, "results": results},
            status=status.HTTP_200_OK,
        )

    def post(self, request):
        """Place an order.

        Returns:
            Response: 201 with the order, its items and ``meta`` on success;
            see the module docstring for the error statuses.
        """
        try:
            dto = CreateOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        service = providers.get_checkout_service()
        try:
            result = service.place_order(dto.to_request(_shopper(request.user)))
        except CheckoutError as e:
            return _checkout_error(e)

        return Response(_order_body(result), status=status.HTTP_201_CREATED)


class RetrieveOrderView(APIView):
    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, oid):
        order = OrderRepository().get(oid)
        if order is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        if order.user_id != request.user.pk and not request.user.is_staff:
            return Response({"detail": "FORBIDDEN"}, status=status.HTTP_403_FORBIDDEN)
        return Response(OrderReadDTO.from_order(order).model_dump(mode="json"), status=status.HTTP_200_OK)


class PaymentOrderView(APIView):
    """Open an order on the payment gateway before the hosted checkout."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        try:
            dto = CreatePaymentOrderDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        receipt = dto.receipt or f"receipt_{int(time.time() * 1000)}"
        notes = {"user_id": str(request.user.pk), "user_email": request.user.email or ""}
        gateway = providers.get_payment_gateway()
        try:
            gw_order = gateway.create_order(dto.amount_minor(), dto.currency, receipt, notes)
        except GatewayRejected as e:
            logger.warning("gateway rejected order", extra={"status": e.status_code, "error": e.detail})
            return Response(
                {"detail": "PAYMENT_GATEWAY_REJECTED", "error": e.detail}, status=status.HTTP_502_BAD_GATEWAY
            )
        except (httpx.HTTPError, CircuitOpen):
            logger.exception("gateway order creation failed")
            return Response({"detail": "UPSTREAM_UNAVAILABLE"}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(
            {
                "success": True,
                "order_id": gw_order.id,
                "amount": gw_order.amount,
                "currency": gw_order.currency,
                "key": getattr(settings, "PAYMENT_GATEWAY_KEY_ID", ""),
            },
            status=status.HTTP_200_OK,
        )


class PaymentVerifyView(APIView):
    """Verify the gateway signature, then create the order as PROCESSING."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "payments"

    def post(self, request):
        try:
            dto = VerifyPaymentDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        service = providers.get_checkout_service()
        try:
            result = service.place_paid_order(dto.confirmation(), dto.to_request(_shopper(request.user)))
        except PaymentSignatureError as e:
            logger.warning("payment verification failed", extra={"code": str(e), "user_id": request.user.pk})
            return _checkout_error(e)
        except CheckoutError as e:
            return _checkout_error(e)

        return Response(
            {
                "success": True,
                "order": _order_body(result),
                "payment_id": dto.gateway_payment_id,
                "message": "Payment verified and order created successfully",
            },
            status=status.HTTP_201_CREATED,
        )


class ServiceStatusView(APIView):
    """Public read of the service-stop flag; staff-only toggle."""

    def get_permissions(self):
        if self.request.method == "POST":
            return [IsAdminUser()]
        return [AllowAny()]

    @staticmethod
    def _body(row) -> dict:
        return {
            "is_stopped": row.is_stopped,
            "message": row.message,
            "stopped_at": row.stopped_at,
            "updated_at": row.updated_at,
        }

    def get(self, request):
        return Response(self._body(ServiceStatusRepository().get_or_create()), status=status.HTTP_200_OK)

    def post(self, request):
        try:
            dto = ServiceStatusUpdateDTO.model_validate(request.data)
        except ValidationError as e:
            return _validation_error(e)

        row = ServiceStatusRepository().set_stopped(dto.is_stopped, dto.message, request.user.pk)
        logger.info(
            "services stopped" if row.is_stopped else "services resumed",
            extra={"user_id": request.user.pk, "status_message": row.message},
        )
        return Response(
            {
                "success": True,
                "status": self._body(row),
                "message": (
                    "Services have been stopped. Users cannot place orders."
                    if row.is_stopped
                    else "Services have been resumed. Users can now place orders."
                ),
            },
            status=status.HTTP_200_OK,
        )
