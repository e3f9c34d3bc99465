from django.urls import path

from .views import (
    AcceptanceTokenView,
    OrderDetailView,
    OrdersCollectionView,
    PaymentsView,
    QuoteView,
    TransactionStatusView,
    WebhookView,
)

app_name = "checkout"

urlpatterns = [
    path("quote/", QuoteView.as_view(), name="quote"),
    path("orders/", OrdersCollectionView.as_view(), name="orders-collection"),
    path("orders/<str:reference>/", OrderDetailView.as_view(), name="orders-detail"),
    path("payments/", PaymentsView.as_view(), name="payments"),
    path("transactions/<str:external_id>/status/", TransactionStatusView.as_view(), name="transaction-status"),
    path("acceptance-token/", AcceptanceTokenView.as_view(), name="acceptance-token"),
    path("webhook/", WebhookView.as_view(), name="webhook"),
]
