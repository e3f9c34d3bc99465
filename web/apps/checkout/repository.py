"""Repository layer backed by the Django ORM.

Each repository implements one of the ports declared in ``domain`` and maps
between ORM rows and domain dataclasses, so services never touch model
instances. Storage failures surface as ``RepositoryError``.

Status writes that must not clobber a concurrent update are conditional
``UPDATE ... WHERE status IN (...)`` statements; the affected-row count tells
the caller whether it won.
"""

from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Any, Optional

from django.db import DatabaseError, transaction
from django.db.models import F
from django.db.models.functions import Greatest
from django.utils import timezone

from apps.catalog.models import ProductModel

from .domain import (
    Customer,
    Delivery,
    DeliveryStatus,
    LineItem,
    Order,
    OrderStatus,
    Product,
    RepositoryError,
    Transaction,
    TransactionStatus,
)
from .models import CustomerModel, DeliveryModel, OrderModel, TransactionModel


def _storage_errors(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except DatabaseError as e:
            raise RepositoryError(f"{fn.__qualname__}: {e}") from e

    return wrapper


# ---- Mappers ----

def _to_product(row: ProductModel) -> Product:
    return Product(id=row.id, name=row.name, price_cents=row.price_cents, stock=row.stock)


def _to_customer(row: CustomerModel) -> Customer:
    return Customer(id=row.id, email=row.email, full_name=row.full_name, phone_number=row.phone_number)


def _to_delivery(row: DeliveryModel) -> Delivery:
    return Delivery(
        id=row.id,
        address_line_1=row.address_line_1,
        address_line_2=row.address_line_2,
        city=row.city,
        region=row.region,
        country=row.country,
        postal_code=row.postal_code,
        phone_number=row.phone_number,
        delivery_notes=row.delivery_notes,
        status=DeliveryStatus(row.status),
        estimated_delivery_date=row.estimated_delivery_date,
    )


def _to_order(row: OrderModel) -> Order:
    items = [
        LineItem(
            product_id=int(i["product_id"]),
            quantity=int(i["quantity"]),
            unit_price_cents=int(i.get("unit_price_cents", 0)),
        )
        for i in (row.items or [])
    ]
    return Order(
        id=row.id,
        reference=row.reference,
        amount_in_cents=row.amount_in_cents,
        currency=row.currency,
        status=OrderStatus(row.status),
        items=items,
        customer_id=row.customer_id,
        delivery_id=row.delivery_id,
        transaction_id=row.transaction_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_transaction(row: TransactionModel) -> Transaction:
    return Transaction(
        id=row.id,
        external_id=row.external_id,
        reference=row.reference,
        amount_in_cents=row.amount_in_cents,
        currency=row.currency,
        status=TransactionStatus(row.status),
        payment_method_type=row.payment_method_type,
        payment_method_token=row.payment_method_token,
        payment_data=row.payment_data,
        signature=row.signature,
    )


# ---- Repositories ----

class DjangoCatalogRepository:
    @_storage_errors
    def get_product(self, product_id: int) -> Optional[Product]:
        row = ProductModel.objects.filter(pk=product_id).first()
        return _to_product(row) if row else None

    @_storage_errors
    def decrement_stock(self, product_id: int, quantity: int) -> None:
        ProductModel.objects.filter(pk=product_id).update(stock=Greatest(F("stock") - quantity, 0))


class DjangoCustomerRepository:
    @_storage_errors
    def upsert_by_email(self, email: str, full_name: str, phone_number: str | None) -> Customer:
        row, _ = CustomerModel.objects.update_or_create(
            email=email.lower(),
            defaults={"full_name": full_name, "phone_number": phone_number},
        )
        return _to_customer(row)

    @_storage_errors
    def get(self, customer_id: int) -> Optional[Customer]:
        row = CustomerModel.objects.filter(pk=customer_id).first()
        return _to_customer(row) if row else None


class DjangoDeliveryRepository:
    @_storage_errors
    def create(self, delivery: Delivery) -> Delivery:
        row = DeliveryModel.objects.create(
            address_line_1=delivery.address_line_1,
            address_line_2=delivery.address_line_2,
            city=delivery.city,
            region=delivery.region,
            country=delivery.country,
            postal_code=delivery.postal_code,
            phone_number=delivery.phone_number,
            delivery_notes=delivery.delivery_notes,
            status=delivery.status.value,
        )
        return _to_delivery(row)

    @_storage_errors
    def get(self, delivery_id: int) -> Optional[Delivery]:
        row = DeliveryModel.objects.filter(pk=delivery_id).first()
        return _to_delivery(row) if row else None

    @_storage_errors
    def assign(self, delivery_id: int, estimated_delivery_date: datetime) -> None:
        DeliveryModel.objects.filter(pk=delivery_id).update(
            status=DeliveryModel.Status.ASSIGNED,
            estimated_delivery_date=estimated_delivery_date,
            updated_at=timezone.now(),
        )


class DjangoOrderRepository:
    """Persists Order aggregates; status changes go through conditional updates."""

    @_storage_errors
    def create(self, order: Order) -> Order:
        row = OrderModel.objects.create(
            reference=order.reference,
            customer_id=order.customer_id,
            delivery_id=order.delivery_id,
            amount_in_cents=order.amount_in_cents,
            currency=order.currency,
            status=order.status.value,
            items=[i.as_dict() for i in order.items],
        )
        return _to_order(row)

    @_storage_errors
    def get(self, order_id: int) -> Optional[Order]:
        row = OrderModel.objects.filter(pk=order_id).first()
        return _to_order(row) if row else None

    @_storage_errors
    def get_by_reference(self, reference: str) -> Optional[Order]:
        row = OrderModel.objects.filter(reference=reference).first()
        return _to_order(row) if row else None

    @_storage_errors
    def attach_transaction(self, order_id: int, transaction_id: int, status: OrderStatus) -> None:
        # update() bypasses auto_now, so updated_at is set explicitly
        OrderModel.objects.filter(pk=order_id).update(
            transaction_id=transaction_id,
            status=status.value,
            updated_at=timezone.now(),
        )

    @_storage_errors
    def transition_status(self, order_id: int, status: OrderStatus, from_statuses) -> bool:
        allowed = [s.value if isinstance(s, OrderStatus) else s for s in from_statuses]
        changed = OrderModel.objects.filter(pk=order_id, status__in=allowed).update(
            status=status.value,
            updated_at=timezone.now(),
        )
        return changed == 1


class DjangoTransactionRepository:
    """Persists payment attempts; terminal rows are never rewritten."""

    @_storage_errors
    def create(self, tx: Transaction) -> Transaction:
        row = TransactionModel.objects.create(
            external_id=tx.external_id,
            reference=tx.reference,
            amount_in_cents=tx.amount_in_cents,
            currency=tx.currency,
            status=tx.status.value,
            payment_method_type=tx.payment_method_type,
            payment_method_token=tx.payment_method_token,
            payment_data=tx.payment_data,
            signature=tx.signature,
        )
        return _to_transaction(row)

    @_storage_errors
    def get(self, transaction_id: int) -> Optional[Transaction]:
        row = TransactionModel.objects.filter(pk=transaction_id).first()
        return _to_transaction(row) if row else None

    @_storage_errors
    def get_by_external_id(self, external_id: str) -> Optional[Transaction]:
        row = TransactionModel.objects.filter(external_id=external_id).first()
        return _to_transaction(row) if row else None

    @_storage_errors
    def update_if_pending(self, transaction_id: int, status: TransactionStatus, payment_data: Any) -> bool:
        changed = TransactionModel.objects.filter(
            pk=transaction_id, status=TransactionModel.Status.PENDING
        ).update(status=status.value, payment_data=payment_data, updated_at=timezone.now())
        return changed == 1


class DjangoUnitOfWork:
    """Unit of work over Django's ``transaction.atomic``.

    Nested scopes become savepoints. ``rollback()`` marks the innermost scope
    so it is rolled back on exit without raising.
    """

    @contextmanager
    def atomic(self):
        with transaction.atomic():
            yield self

    def rollback(self) -> None:
        transaction.set_rollback(True)
