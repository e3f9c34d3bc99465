"""Domain models, status vocabulary and ports for checkout.

This module contains the dataclasses used as DTOs for orders, transactions,
customers and deliveries, the two status vocabularies (local order status
and gateway transaction status) with the mapping between them, and the
protocol definitions (ports) for persistence and the payment gateway.
Nothing here performs I/O.
"""

import random
import re
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional, Protocol


# ---- Enums ----
class OrderStatus(str, Enum):
    """Local order lifecycle statuses."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    DECLINED = "declined"
    VOIDED = "voided"
    ERROR = "error"
    CANCELLED = "cancelled"


class TransactionStatus(str, Enum):
    """Gateway vocabulary for a payment attempt.

    Every status except PENDING is terminal: once a transaction reaches it
    the row is immutable.
    """

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    DECLINED = "DECLINED"
    VOIDED = "VOIDED"
    ERROR = "ERROR"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING

    @classmethod
    def parse(cls, raw: Any) -> Optional["TransactionStatus"]:
        """Return the enum member for ``raw`` or None when unknown."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).upper())
        except ValueError:
            return None


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethodType(str, Enum):
    CARD = "CARD"
    NEQUI = "NEQUI"


# Orders in these statuses accept a new payment attempt.
PAYABLE_ORDER_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.ERROR, OrderStatus.DECLINED, OrderStatus.VOIDED}
)

# Orders in these statuses may still be moved by a gateway update; approved
# and cancelled orders never regress.
OPEN_ORDER_STATUSES = PAYABLE_ORDER_STATUSES | {OrderStatus.PROCESSING}

_ORDER_STATUS_BY_GATEWAY_STATUS = {
    TransactionStatus.APPROVED: OrderStatus.APPROVED,
    TransactionStatus.DECLINED: OrderStatus.DECLINED,
    TransactionStatus.VOIDED: OrderStatus.VOIDED,
    TransactionStatus.ERROR: OrderStatus.ERROR,
    TransactionStatus.PENDING: OrderStatus.PROCESSING,
}


def order_status_for(gateway_status: Any) -> OrderStatus:
    """Map a gateway transaction status to the local order status.

    Unknown values map to ``pending``.
    """
    parsed = TransactionStatus.parse(gateway_status)
    if parsed is None:
        return OrderStatus.PENDING
    return _ORDER_STATUS_BY_GATEWAY_STATUS[parsed]


def generate_reference(now: Optional[float] = None, rng: random.Random | None = None) -> str:
    """Build a human-shareable order reference ``ORDER-<unixtime>-<4 digits>``."""
    ts = int(time.time() if now is None else now)
    suffix = (rng or random).randint(1000, 9999)
    return f"ORDER-{ts}-{suffix}"


EMAIL_RE = re.compile(r"^[\w+\-.]+@[a-z\d\-]+(\.[a-z\d\-]+)*\.[a-z]+$", re.IGNORECASE)


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and EMAIL_RE.match(email) is not None


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class LineItem:
    """A priced line item stored on the order.

    ``unit_price_cents`` is the catalog price resolved server-side when the
    order was created, never a client-submitted value.
    """

    product_id: int
    quantity: int
    unit_price_cents: int

    def as_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
        }


@dataclass
class Product:
    id: int
    name: str
    price_cents: int
    stock: int = 0


@dataclass
class Customer:
    id: int | None
    email: str
    full_name: str
    phone_number: str | None = None


@dataclass
class Delivery:
    id: int | None
    address_line_1: str
    city: str
    region: str
    country: str = "CO"
    address_line_2: str | None = None
    postal_code: str | None = None
    phone_number: str | None = None
    delivery_notes: str | None = None
    status: DeliveryStatus = DeliveryStatus.PENDING
    estimated_delivery_date: datetime | None = None

    def shipping_address(self) -> dict:
        """Address payload in the shape the gateway expects."""
        return {
            "address_line_1": self.address_line_1,
            "address_line_2": self.address_line_2,
            "city": self.city,
            "region": self.region,
            "country": self.country,
            "postal_code": self.postal_code,
            "phone_number": self.phone_number,
        }


@dataclass
class Order:
    """Order aggregate.

    Attributes:
        id: Persistent identifier, or None if not yet saved.
        reference: Unique human-readable reference shared with the gateway.
        amount_in_cents: Authoritative total in minor units.
        currency: ISO currency code.
        status: Current OrderStatus.
        items: Priced line items in submission order.
        customer_id / delivery_id / transaction_id: Foreign keys to the
            other aggregates (the latest payment attempt for the latter).
    """

    id: int | None
    reference: str
    amount_in_cents: int
    currency: str
    status: OrderStatus = OrderStatus.PENDING
    items: List[LineItem] = field(default_factory=list)
    customer_id: int | None = None
    delivery_id: int | None = None
    transaction_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Transaction:
    """A single payment attempt against the gateway."""

    id: int | None
    reference: str
    amount_in_cents: int
    currency: str
    status: TransactionStatus
    payment_method_type: str
    external_id: str | None = None
    payment_method_token: str | None = None
    payment_data: Any = None
    signature: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


@dataclass(frozen=True)
class PaymentMethod:
    """Payment method selection.

    CARD payments carry an opaque token produced by client-side
    tokenization; NEQUI payments carry the wallet phone number instead.
    """

    type: PaymentMethodType
    token: str | None = None
    phone_number: str | None = None
    installments: int = 1

    def as_gateway_payload(self) -> dict:
        data: dict[str, Any] = {"type": self.type.value}
        if self.type is PaymentMethodType.CARD:
            data["token"] = self.token
            data["installments"] = self.installments or 1
        elif self.type is PaymentMethodType.NEQUI:
            data["phone_number"] = self.phone_number
        return data


@dataclass(frozen=True)
class TransactionRequest:
    """Parameters for creating a gateway transaction."""

    acceptance_token: str
    amount_in_cents: int
    currency: str
    reference: str
    customer_email: str
    payment_method: PaymentMethod
    full_name: str | None = None
    phone_number: str | None = None
    shipping_address: dict | None = None
    redirect_url: str | None = None


@dataclass(frozen=True)
class GatewayError:
    kind: str
    message: str
    raw: Any = None

    def as_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message, "raw": self.raw}


@dataclass(frozen=True)
class GatewayResponse:
    """Outcome of one gateway call; failures are data, never exceptions."""

    success: bool
    data: Any = None
    error: GatewayError | None = None
    status_code: int | None = None

    @classmethod
    def ok(cls, data: Any, status_code: int | None = 200) -> "GatewayResponse":
        return cls(success=True, data=data, status_code=status_code)

    @classmethod
    def fail(cls, kind: str, message: str, raw: Any = None, status_code: int | None = None) -> "GatewayResponse":
        return cls(success=False, error=GatewayError(kind, message, raw), status_code=status_code)


class RepositoryError(Exception):
    """Raised by persistence adapters when storage fails."""


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read access to product prices plus stock decrement."""

    def get_product(self, product_id: int) -> Optional[Product]:
        raise NotImplementedError()

    def decrement_stock(self, product_id: int, quantity: int) -> None:
        """Decrease stock by ``quantity``, flooring at zero."""
        raise NotImplementedError()


class CustomerRepository(Protocol):
    def upsert_by_email(self, email: str, full_name: str, phone_number: str | None) -> Customer:
        raise NotImplementedError()

    def get(self, customer_id: int) -> Optional[Customer]:
        raise NotImplementedError()


class DeliveryRepository(Protocol):
    def create(self, delivery: Delivery) -> Delivery:
        raise NotImplementedError()

    def get(self, delivery_id: int) -> Optional[Delivery]:
        raise NotImplementedError()

    def assign(self, delivery_id: int, estimated_delivery_date: datetime) -> None:
        raise NotImplementedError()


class OrderRepository(Protocol):
    def create(self, order: Order) -> Order:
        raise NotImplementedError()

    def get(self, order_id: int) -> Optional[Order]:
        raise NotImplementedError()

    def get_by_reference(self, reference: str) -> Optional[Order]:
        raise NotImplementedError()

    def attach_transaction(self, order_id: int, transaction_id: int, status: OrderStatus) -> None:
        raise NotImplementedError()

    def transition_status(self, order_id: int, status: OrderStatus, from_statuses) -> bool:
        """Conditionally move an order to ``status``.

        Returns:
            True when the row was in one of ``from_statuses`` and has been
            updated, False otherwise.
        """
        raise NotImplementedError()


class TransactionRepository(Protocol):
    def create(self, tx: Transaction) -> Transaction:
        raise NotImplementedError()

    def get(self, transaction_id: int) -> Optional[Transaction]:
        raise NotImplementedError()

    def get_by_external_id(self, external_id: str) -> Optional[Transaction]:
        raise NotImplementedError()

    def update_if_pending(self, transaction_id: int, status: TransactionStatus, payment_data: Any) -> bool:
        """Compare-and-set: write only while the stored status is PENDING."""
        raise NotImplementedError()


class PaymentGatewayPort(Protocol):
    """Port describing the payment gateway operations used by checkout."""

    def get_acceptance_token(self) -> GatewayResponse:
        raise NotImplementedError()

    def create_transaction(self, request: TransactionRequest) -> GatewayResponse:
        raise NotImplementedError()

    def get_transaction(self, external_id: str) -> GatewayResponse:
        raise NotImplementedError()

    def validate_webhook_signature(self, raw_payload: bytes, signature: str | None, timestamp: str | None) -> bool:
        raise NotImplementedError()

    def generate_signature(self, reference: str, amount_in_cents: int, currency: str) -> str:
        raise NotImplementedError()


class UnitOfWork(Protocol):
    """Transactional scope spanning several repositories."""

    def atomic(self) -> AbstractContextManager:
        raise NotImplementedError()

    def rollback(self) -> None:
        """Mark the innermost open scope for rollback."""
        raise NotImplementedError()
