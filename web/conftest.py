import pytest


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings):
    settings.USE_HTTP_ADAPTERS = False
    settings.HTTP_RETRY_BACKOFF_BASE = 0
    settings.CHECKOUT_POLL_DELAY_SECS = 0


@pytest.fixture(autouse=True)
def fresh_circuit_breaker(monkeypatch):
    from apps.checkout import http_adapters

    monkeypatch.setattr(
        http_adapters, "_gateway_cb", http_adapters.CircuitBreaker("payment_gateway", 3, 30.0)
    )


@pytest.fixture
def gateway(monkeypatch, settings):
    """In-memory gateway shared by the test and every service built through ``providers``."""
    from apps.checkout import providers
    from apps.checkout.adapters import PaymentGatewayStub

    stub = PaymentGatewayStub(
        integrity_secret=settings.PAYMENT_GATEWAY_INTEGRITY_SECRET,
        webhook_secret=settings.PAYMENT_GATEWAY_WEBHOOK_SECRET,
    )
    monkeypatch.setattr(providers, "get_gateway", lambda: stub)
    return stub


@pytest.fixture
def products(db):
    """Two catalog products: a cheap one and one above the free-shipping threshold."""
    from apps.catalog.models import ProductModel

    return {
        "mug": ProductModel.objects.create(name="Mug", price_cents=2_500_000, stock=10),
        "chair": ProductModel.objects.create(name="Chair", price_cents=6_000_000, stock=3),
    }


@pytest.fixture
def order_payload(products):
    # 2 mugs: subtotal 5_000_000, free shipping, tax 950_000
    return {
        "customer_email": "ana@example.com",
        "customer_name": "Ana Gomez",
        "customer_phone": "3001234567",
        "shipping_address": {
            "address_line_1": "Calle 1 # 2-3",
            "city": "Bogota",
            "region": "Cundinamarca",
        },
        "items": [{"product_id": products["mug"].id, "quantity": 2}],
        "amount_in_cents": 5_950_000,
    }
