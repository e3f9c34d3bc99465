"""Service provider helpers wiring checkout services with their ports.

``get_gateway`` returns the HTTP gateway client when
``settings.USE_HTTP_ADAPTERS`` is truthy, and a process-wide
``PaymentGatewayStub`` otherwise (tests and local development). The
``build_*`` factories assemble services over the Django ORM repositories
and read their tunables from settings.
"""

from django.conf import settings

from .adapters import PaymentGatewayStub
from .domain import PaymentGatewayPort
from .http_adapters import HttpPaymentGatewayClient
from .pricing import DEFAULT_TOLERANCE_CENTS
from .reconciliation import StatusReconciler, WebhookHandler
from .repository import (
    DjangoCatalogRepository,
    DjangoCustomerRepository,
    DjangoDeliveryRepository,
    DjangoOrderRepository,
    DjangoTransactionRepository,
    DjangoUnitOfWork,
)
from .services import CheckoutService, CreateOrderService, OrderLookupService, PaymentProcessor

_stub_gateway: PaymentGatewayStub | None = None


def get_gateway() -> PaymentGatewayPort:
    """Return the configured payment gateway adapter."""
    global _stub_gateway
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        return HttpPaymentGatewayClient()
    # The stub keeps its transactions in memory, so it is shared per process.
    if _stub_gateway is None:
        _stub_gateway = PaymentGatewayStub(
            integrity_secret=settings.PAYMENT_GATEWAY_INTEGRITY_SECRET,
            webhook_secret=settings.PAYMENT_GATEWAY_WEBHOOK_SECRET,
        )
    return _stub_gateway


def build_reconciler(gateway: PaymentGatewayPort | None = None) -> StatusReconciler:
    return StatusReconciler(
        orders=DjangoOrderRepository(),
        transactions=DjangoTransactionRepository(),
        deliveries=DjangoDeliveryRepository(),
        catalog=DjangoCatalogRepository(),
        gateway=gateway or get_gateway(),
        uow=DjangoUnitOfWork(),
        delivery_eta_days=getattr(settings, "CHECKOUT_DELIVERY_ETA_DAYS", 3),
    )


def build_create_order_service() -> CreateOrderService:
    return CreateOrderService(
        catalog=DjangoCatalogRepository(),
        customers=DjangoCustomerRepository(),
        deliveries=DjangoDeliveryRepository(),
        orders=DjangoOrderRepository(),
        uow=DjangoUnitOfWork(),
        currency=getattr(settings, "CHECKOUT_CURRENCY", "COP"),
        tolerance_cents=getattr(settings, "CHECKOUT_AMOUNT_TOLERANCE_CENTS", DEFAULT_TOLERANCE_CENTS),
    )


def build_payment_processor(gateway: PaymentGatewayPort | None = None) -> PaymentProcessor:
    gateway = gateway or get_gateway()
    return PaymentProcessor(
        orders=DjangoOrderRepository(),
        transactions=DjangoTransactionRepository(),
        customers=DjangoCustomerRepository(),
        deliveries=DjangoDeliveryRepository(),
        gateway=gateway,
        reconciler=build_reconciler(gateway),
        uow=DjangoUnitOfWork(),
    )


def build_checkout_service() -> CheckoutService:
    return CheckoutService(
        create_order=build_create_order_service(),
        processor=build_payment_processor(),
        uow=DjangoUnitOfWork(),
    )


def build_webhook_handler() -> WebhookHandler:
    gateway = get_gateway()
    return WebhookHandler(
        gateway=gateway,
        transactions=DjangoTransactionRepository(),
        reconciler=build_reconciler(gateway),
    )


def build_order_lookup() -> OrderLookupService:
    return OrderLookupService(
        orders=DjangoOrderRepository(),
        customers=DjangoCustomerRepository(),
        transactions=DjangoTransactionRepository(),
        deliveries=DjangoDeliveryRepository(),
    )
