from django.urls import path

from .views import (
    OrdersCollectionView,
    PaymentOrderView,
    PaymentVerifyView,
    RetrieveOrderView,
    ServiceStatusView,
)

app_name = "orders"

urlpatterns = [
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("orders/<uuid:oid>/", RetrieveOrderView.as_view(), name="orders-detail"),
    path("payment/create-order/", PaymentOrderView.as_view(), name="payment-create-order"),
    path("payment/verify/", PaymentVerifyView.as_view(), name="payment-verify"),
    path("service-status/", ServiceStatusView.as_view(), name="service-status"),
]
