"""CreateOrderService against the Django ORM repositories."""
import pytest

from apps.checkout import providers
from apps.checkout.domain import OrderStatus
from apps.checkout.models import CustomerModel, DeliveryModel, OrderModel
from apps.checkout.result import ErrorKind
from apps.checkout.services import CreateOrderCommand

pytestmark = pytest.mark.django_db


def _command(payload, **overrides):
    data = {**payload, **overrides}
    return CreateOrderCommand(
        customer_email=data.get("customer_email"),
        customer_name=data.get("customer_name"),
        customer_phone=data.get("customer_phone"),
        shipping_address=data.get("shipping_address"),
        items=data.get("items"),
        amount_in_cents=data.get("amount_in_cents"),
        currency=data.get("currency"),
    )


def test_creates_customer_delivery_and_pending_order(order_payload, products):
    result = providers.build_create_order_service().execute(_command(order_payload))

    assert result.ok
    created = result.value
    assert created.order.status is OrderStatus.PENDING
    assert created.order.amount_in_cents == 5_950_000
    assert created.order.currency == "COP"
    assert created.order.reference.startswith("ORDER-")
    assert created.breakdown.shipping_cents == 0

    row = OrderModel.objects.get(reference=created.order.reference)
    assert row.customer.email == "ana@example.com"
    assert row.delivery.country == "CO"
    assert row.delivery.phone_number == "3001234567"
    assert row.items == [{"product_id": products["mug"].id, "quantity": 2, "unit_price_cents": 2_500_000}]


def test_missing_fields_are_all_reported(order_payload):
    cmd = _command(order_payload, customer_name=None, items=[], shipping_address={"address_line_1": "x"})
    result = providers.build_create_order_service().execute(cmd)

    assert not result.ok
    assert result.error.kind is ErrorKind.VALIDATION_ERROR
    assert result.error.details["missing"] == [
        "customer_name",
        "items",
        "shipping_address.city",
        "shipping_address.region",
    ]
    assert OrderModel.objects.count() == 0


def test_invalid_email_is_rejected(order_payload):
    result = providers.build_create_order_service().execute(_command(order_payload, customer_email="ana@"))
    assert result.error.kind is ErrorKind.VALIDATION_ERROR
    assert result.error.details["field"] == "customer_email"


def test_unknown_product_is_a_validation_error(order_payload):
    cmd = _command(order_payload, items=[{"product_id": 999_999, "quantity": 1}])
    result = providers.build_create_order_service().execute(cmd)
    assert result.error.kind is ErrorKind.VALIDATION_ERROR
    assert result.error.details["product_id"] == 999_999


def test_client_prices_are_ignored(order_payload, products):
    cmd = _command(
        order_payload,
        items=[{"product_id": products["mug"].id, "quantity": 2, "unit_price_cents": 1}],
    )
    result = providers.build_create_order_service().execute(cmd)
    assert result.ok
    assert result.value.order.items[0].unit_price_cents == 2_500_000


def test_amount_mismatch_reports_both_totals_and_persists_nothing(order_payload):
    cmd = _command(order_payload, amount_in_cents=5_950_000 - 101)
    result = providers.build_create_order_service().execute(cmd)

    assert result.error.kind is ErrorKind.VALIDATION_ERROR
    details = result.error.details
    assert details["calculated"] == 5_950_000
    assert details["claimed"] == 5_949_899
    assert details["difference"] == 101
    assert details["breakdown"]["tax_cents"] == 950_000
    assert OrderModel.objects.count() == 0
    assert CustomerModel.objects.count() == 0
    assert DeliveryModel.objects.count() == 0


def test_amount_within_tolerance_stores_calculated_total(order_payload):
    result = providers.build_create_order_service().execute(_command(order_payload, amount_in_cents=5_950_050))
    assert result.ok
    assert result.value.order.amount_in_cents == 5_950_000


def test_returning_customer_is_updated_not_duplicated(order_payload):
    service = providers.build_create_order_service()
    assert service.execute(_command(order_payload)).ok
    assert service.execute(_command(order_payload, customer_email="ANA@example.com", customer_name="Ana G.")).ok

    assert CustomerModel.objects.count() == 1
    assert CustomerModel.objects.get().full_name == "Ana G."
    assert OrderModel.objects.count() == 2


def test_quote_prices_from_catalog(products):
    result = providers.build_create_order_service().quote([{"product_id": products["chair"].id, "quantity": 1}])
    assert result.ok
    assert result.value.as_dict() == {
        "subtotal_cents": 6_000_000,
        "shipping_cents": 0,
        "tax_cents": 1_140_000,
        "total_cents": 7_140_000,
    }
