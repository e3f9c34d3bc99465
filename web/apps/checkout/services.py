"""Checkout domain services.

``CreateOrderService`` validates a checkout request, re-prices it from the
catalog and persists Customer, Delivery and Order in one unit of work.
``PaymentProcessor`` runs exactly one payment attempt for a persisted order.
``CheckoutService`` chains both inside a single transactional scope, and
``OrderLookupService`` assembles the order detail view.

Every service returns ``Ok``/``Err`` values (see ``result``); none of them
performs HTTP request handling.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .domain import (
    PAYABLE_ORDER_STATUSES,
    CatalogPort,
    Customer,
    CustomerRepository,
    Delivery,
    DeliveryRepository,
    LineItem,
    Order,
    OrderRepository,
    OrderStatus,
    PaymentGatewayPort,
    PaymentMethod,
    PaymentMethodType,
    RepositoryError,
    Transaction,
    TransactionRepository,
    TransactionRequest,
    TransactionStatus,
    UnitOfWork,
    generate_reference,
    is_valid_email,
    order_status_for,
)
from .pricing import DEFAULT_TOLERANCE_CENTS, PriceBreakdown, PriceCalculator
from .reconciliation import StatusReconciler
from .result import (
    Err,
    ErrorKind,
    Ok,
    Result,
    not_found,
    payment_failed,
    server_error,
    validation_error,
)

logger = logging.getLogger("checkout")

REQUIRED_ADDRESS_FIELDS = ("address_line_1", "city", "region")


@dataclass(frozen=True)
class CreateOrderCommand:
    """Checkout input as submitted by the storefront.

    ``items`` entries are ``{"product_id", "quantity"}``; any client-side price
    they carry is ignored. ``amount_in_cents`` is the total the client
    displayed and is only used to detect a mismatch.
    """

    customer_email: Optional[str]
    customer_name: Optional[str]
    customer_phone: Optional[str]
    shipping_address: Optional[dict]
    items: Optional[list]
    amount_in_cents: Optional[int]
    currency: Optional[str] = None


@dataclass(frozen=True)
class CreatedOrder:
    order: Order
    customer: Customer
    delivery: Delivery
    breakdown: PriceBreakdown


@dataclass(frozen=True)
class PaymentOutcome:
    order_reference: str
    order_status: OrderStatus
    transaction: Transaction
    gateway_data: Any


@dataclass(frozen=True)
class CheckoutOutcome:
    created: CreatedOrder
    payment: Optional[PaymentOutcome] = None


class CreateOrderService:
    """Validates, prices and persists a new order."""

    def __init__(
        self,
        catalog: CatalogPort,
        customers: CustomerRepository,
        deliveries: DeliveryRepository,
        orders: OrderRepository,
        uow: UnitOfWork,
        calculator: PriceCalculator | None = None,
        currency: str = "COP",
        tolerance_cents: int = DEFAULT_TOLERANCE_CENTS,
        reference_factory: Callable[[], str] = generate_reference,
    ):
        self.catalog = catalog
        self.customers = customers
        self.deliveries = deliveries
        self.orders = orders
        self.uow = uow
        self.calculator = calculator or PriceCalculator()
        self.currency = currency
        self.tolerance_cents = tolerance_cents
        self.reference_factory = reference_factory

    def execute(self, cmd: CreateOrderCommand) -> Result[CreatedOrder]:
        missing = self._missing_fields(cmd)
        if missing:
            return validation_error("Missing required fields", missing=missing)
        if not is_valid_email(cmd.customer_email):
            return validation_error("Invalid customer email", field="customer_email")

        priced = self._resolve_prices(cmd.items)
        if isinstance(priced, Err):
            return priced
        items: list[LineItem] = priced.value

        validation = self.calculator.validate_amount(items, cmd.amount_in_cents, self.tolerance_cents)
        if not validation.valid:
            logger.warning(
                "amount mismatch",
                extra={"claimed": validation.claimed, "calculated": validation.calculated},
            )
            return validation_error(
                "The provided amount does not match the calculated total",
                claimed=validation.claimed,
                calculated=validation.calculated,
                difference=validation.difference,
                breakdown=validation.breakdown.as_dict(),
            )

        address = cmd.shipping_address
        try:
            with self.uow.atomic():
                customer = self.customers.upsert_by_email(
                    cmd.customer_email, cmd.customer_name, cmd.customer_phone
                )
                delivery = self.deliveries.create(
                    Delivery(
                        id=None,
                        address_line_1=address["address_line_1"],
                        address_line_2=address.get("address_line_2"),
                        city=address["city"],
                        region=address["region"],
                        country=address.get("country") or "CO",
                        postal_code=address.get("postal_code"),
                        phone_number=address.get("phone_number") or cmd.customer_phone,
                        delivery_notes=address.get("notes"),
                    )
                )
                order = self.orders.create(
                    Order(
                        id=None,
                        reference=self.reference_factory(),
                        amount_in_cents=validation.calculated,
                        currency=(cmd.currency or self.currency).upper(),
                        status=OrderStatus.PENDING,
                        items=items,
                        customer_id=customer.id,
                        delivery_id=delivery.id,
                    )
                )
        except RepositoryError as e:
            logger.exception("order creation failed")
            return server_error("Failed to create order", reason=str(e))

        logger.info(
            "order created",
            extra={"reference": order.reference, "amount_in_cents": order.amount_in_cents},
        )
        return Ok(CreatedOrder(order=order, customer=customer, delivery=delivery, breakdown=validation.breakdown))

    def quote(self, raw_items: list) -> Result[PriceBreakdown]:
        """Price ``raw_items`` from the catalog without persisting anything."""
        if not raw_items:
            return validation_error("Missing required fields", missing=["items"])
        priced = self._resolve_prices(raw_items)
        if isinstance(priced, Err):
            return priced
        return Ok(self.calculator.calculate(priced.value))

    @staticmethod
    def _missing_fields(cmd: CreateOrderCommand) -> list[str]:
        missing = [
            name
            for name in ("customer_email", "customer_name", "customer_phone", "amount_in_cents")
            if getattr(cmd, name) in (None, "")
        ]
        if not cmd.items:
            missing.append("items")
        address = cmd.shipping_address or {}
        if not cmd.shipping_address:
            missing.append("shipping_address")
        else:
            missing.extend(
                f"shipping_address.{name}" for name in REQUIRED_ADDRESS_FIELDS if not address.get(name)
            )
        return missing

    def _resolve_prices(self, raw_items: list) -> Result[list[LineItem]]:
        items = []
        try:
            for raw in raw_items:
                product_id = raw.get("product_id")
                quantity = raw.get("quantity")
                if product_id is None or not isinstance(quantity, int) or quantity <= 0:
                    return validation_error("Each item needs a product_id and a positive quantity", item=raw)
                product = self.catalog.get_product(product_id)
                if product is None:
                    return validation_error(f"Product with ID {product_id} not found", product_id=product_id)
                items.append(LineItem(product_id=product.id, quantity=quantity, unit_price_cents=product.price_cents))
        except RepositoryError as e:
            return server_error("Failed to resolve product prices", reason=str(e))
        return Ok(items)


class PaymentProcessor:
    """Drives a single payment attempt for a persisted order.

    The attempt is: acceptance token, gateway transaction creation, local
    Transaction record, order status. A terminal status in the synchronous
    response is applied through ``StatusReconciler.apply_status``, the same
    routine used by polling and webhooks. Failed attempts are recorded and
    never retried here.
    """

    def __init__(
        self,
        orders: OrderRepository,
        transactions: TransactionRepository,
        customers: CustomerRepository,
        deliveries: DeliveryRepository,
        gateway: PaymentGatewayPort,
        reconciler: StatusReconciler,
        uow: UnitOfWork,
    ):
        self.orders = orders
        self.transactions = transactions
        self.customers = customers
        self.deliveries = deliveries
        self.gateway = gateway
        self.reconciler = reconciler
        self.uow = uow

    def pay_reference(self, reference: str, method: PaymentMethod, redirect_url: str | None = None) -> Result[PaymentOutcome]:
        try:
            order = self.orders.get_by_reference(reference)
        except RepositoryError as e:
            return server_error("Failed to load order", reason=str(e))
        if order is None:
            return not_found("Order not found", reference=reference)
        return self.pay(order, method, redirect_url)

    def pay(self, order: Order, method: PaymentMethod, redirect_url: str | None = None) -> Result[PaymentOutcome]:
        if order.status not in PAYABLE_ORDER_STATUSES:
            return validation_error(
                "Order cannot be paid in its current status",
                code="ORDER_NOT_PAYABLE",
                reference=order.reference,
                status=order.status.value,
            )
        if method.type is PaymentMethodType.CARD and not method.token:
            return validation_error("Card payments require a payment token", missing=["payment_method.token"])
        if method.type is PaymentMethodType.NEQUI and not method.phone_number:
            return validation_error("NEQUI payments require a phone number", missing=["payment_method.phone_number"])

        token = self.gateway.get_acceptance_token()
        if not token.success:
            logger.error("acceptance token unavailable", extra={"reference": order.reference})
            return server_error(
                "Failed to get acceptance token",
                gateway_error=token.error.as_dict() if token.error else None,
            )

        try:
            with self.uow.atomic():
                return self._attempt(order, method, token.data["acceptance_token"], redirect_url)
        except RepositoryError as e:
            logger.exception("payment attempt failed", extra={"reference": order.reference})
            return server_error("Failed to record payment attempt", reason=str(e))

    def _attempt(self, order: Order, method: PaymentMethod, acceptance_token: str, redirect_url: str | None) -> Result[PaymentOutcome]:
        # The claim is the gate: a concurrent attempt on the same order loses here.
        if not self.orders.transition_status(order.id, OrderStatus.PROCESSING, PAYABLE_ORDER_STATUSES):
            return validation_error(
                "Order cannot be paid in its current status",
                code="ORDER_NOT_PAYABLE",
                reference=order.reference,
            )

        customer = self.customers.get(order.customer_id) if order.customer_id else None
        delivery = self.deliveries.get(order.delivery_id) if order.delivery_id else None
        request = TransactionRequest(
            acceptance_token=acceptance_token,
            amount_in_cents=order.amount_in_cents,
            currency=order.currency,
            reference=order.reference,
            customer_email=customer.email if customer else None,
            payment_method=method,
            full_name=customer.full_name if customer else None,
            phone_number=customer.phone_number if customer else None,
            shipping_address=delivery.shipping_address() if delivery else None,
            redirect_url=redirect_url,
        )
        signature = self.gateway.generate_signature(order.reference, order.amount_in_cents, order.currency)

        logger.info("payment attempt", extra={"reference": order.reference, "method": method.type.value})
        resp = self.gateway.create_transaction(request)
        data = resp.data if isinstance(resp.data, dict) else {}

        error = None
        if not resp.success:
            error = resp.error.as_dict() if resp.error else {"kind": "unknown_error", "message": "Unknown error"}
        elif data.get("id") is None:
            # An attempt without a gateway id can never be polled or notified.
            error = {"kind": "invalid_response", "message": "Gateway response has no transaction id", "raw": data}

        if error is not None:
            tx = self.transactions.create(
                Transaction(
                    id=None,
                    reference=order.reference,
                    amount_in_cents=order.amount_in_cents,
                    currency=order.currency,
                    status=TransactionStatus.ERROR,
                    payment_method_type=method.type.value,
                    payment_data=error,
                    signature=signature,
                )
            )
            self.orders.attach_transaction(order.id, tx.id, OrderStatus.ERROR)
            logger.warning("payment attempt failed", extra={"reference": order.reference, "kind": error.get("kind")})
            return payment_failed(
                error.get("message") or "Payment failed",
                reference=order.reference,
                order_status=OrderStatus.ERROR.value,
                transaction_id=tx.id,
                gateway_error=error,
            )

        gateway_status = data.get("status")
        tx = self.transactions.create(
            Transaction(
                id=None,
                external_id=str(data["id"]),
                reference=order.reference,
                amount_in_cents=order.amount_in_cents,
                currency=order.currency,
                status=TransactionStatus.PENDING,
                payment_method_type=method.type.value,
                payment_method_token=method.token if method.type is PaymentMethodType.CARD else None,
                payment_data=data,
                signature=signature,
            )
        )
        self.orders.attach_transaction(order.id, tx.id, order_status_for(TransactionStatus.PENDING))

        parsed = TransactionStatus.parse(gateway_status)
        if parsed is not None and parsed.is_terminal:
            applied = self.reconciler.apply_status(tx, parsed, data)
            if isinstance(applied, Err):
                self.uow.rollback()
                return applied
            tx = applied.value.transaction
        elif parsed is None:
            self.orders.attach_transaction(order.id, tx.id, order_status_for(gateway_status))

        current = self.orders.get(order.id)
        return Ok(
            PaymentOutcome(
                order_reference=order.reference,
                order_status=current.status if current else order_status_for(gateway_status),
                transaction=tx,
                gateway_data=data,
            )
        )


class CheckoutService:
    """Create an order and, when a payment method is given, pay it.

    Both steps share one transactional scope. Validation and storage failures
    roll back every write. A payment the gateway rejected is a recorded
    outcome: the order and its ERROR transaction are kept.
    """

    def __init__(self, create_order: CreateOrderService, processor: PaymentProcessor, uow: UnitOfWork):
        self.create_order = create_order
        self.processor = processor
        self.uow = uow

    def checkout(
        self,
        cmd: CreateOrderCommand,
        method: PaymentMethod | None = None,
        redirect_url: str | None = None,
    ) -> Result[CheckoutOutcome]:
        with self.uow.atomic() as uow:
            created = self.create_order.execute(cmd)
            if isinstance(created, Err):
                uow.rollback()
                return created
            if method is None:
                return Ok(CheckoutOutcome(created=created.value))

            paid = self.processor.pay(created.value.order, method, redirect_url)
            if isinstance(paid, Err):
                if paid.error.kind is not ErrorKind.PAYMENT_FAILED:
                    uow.rollback()
                return paid
            return Ok(CheckoutOutcome(created=created.value, payment=paid.value))


class OrderLookupService:
    """Read model for an order with its customer, transaction and delivery."""

    def __init__(
        self,
        orders: OrderRepository,
        customers: CustomerRepository,
        transactions: TransactionRepository,
        deliveries: DeliveryRepository,
    ):
        self.orders = orders
        self.customers = customers
        self.transactions = transactions
        self.deliveries = deliveries

    def get_by_reference(self, reference: str) -> Result[dict]:
        if not reference:
            return validation_error("Reference is required")
        try:
            order = self.orders.get_by_reference(reference)
            if order is None:
                return not_found("Order not found", reference=reference)
            customer = self.customers.get(order.customer_id) if order.customer_id else None
            tx = self.transactions.get(order.transaction_id) if order.transaction_id else None
            delivery = self.deliveries.get(order.delivery_id) if order.delivery_id else None
        except RepositoryError as e:
            return server_error("Failed to retrieve order", reason=str(e))

        body: dict[str, Any] = {
            "id": order.id,
            "reference": order.reference,
            "amount_in_cents": order.amount_in_cents,
            "currency": order.currency,
            "status": order.status.value,
            "items": [i.as_dict() for i in order.items],
            "created_at": order.created_at.isoformat() if order.created_at else None,
            "updated_at": order.updated_at.isoformat() if order.updated_at else None,
        }
        if customer:
            body["customer"] = {
                "email": customer.email,
                "full_name": customer.full_name,
                "phone_number": customer.phone_number,
            }
        if tx:
            body["transaction"] = {"id": tx.external_id, "status": tx.status.value}
        if delivery:
            body["delivery"] = {
                **delivery.shipping_address(),
                "status": delivery.status.value,
                "estimated_delivery_date": (
                    delivery.estimated_delivery_date.isoformat() if delivery.estimated_delivery_date else None
                ),
            }
        return Ok(body)
