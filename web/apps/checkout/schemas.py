"""Pydantic schemas for the checkout API.

Request bodies are parsed here before reaching the services. Shape errors
(wrong types, negative quantities, unknown payment method types) are
rejected by pydantic; required-field checks for the customer and shipping
data are left to ``CreateOrderService`` so it can report every missing
field at once.
"""

import re
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .domain import PaymentMethod, PaymentMethodType
from .services import CreateOrderCommand

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


class OrderItemIn(BaseModel):
    """A cart line. Client-side prices, if sent, are ignored."""

    product_id: int = Field(gt=0)
    quantity: int = Field(gt=0)


class ShippingAddressIn(BaseModel):
    address_line_1: Optional[str] = None
    address_line_2: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    postal_code: Optional[str] = None
    phone_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentMethodIn(BaseModel):
    """Payment method selection.

    Attributes:
        type: ``CARD`` or ``NEQUI`` (case-insensitive).
        token: Card token from client-side tokenization (CARD only).
        phone_number: Wallet phone number (NEQUI only).
        installments: Number of card installments.
    """

    type: PaymentMethodType
    token: Optional[str] = None
    phone_number: Optional[str] = None
    installments: int = Field(default=1, ge=1, le=36)

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v):
        return v.upper() if isinstance(v, str) else v

    def to_domain(self) -> PaymentMethod:
        return PaymentMethod(
            type=self.type,
            token=self.token,
            phone_number=self.phone_number,
            installments=self.installments,
        )


class QuoteIn(BaseModel):
    items: list[OrderItemIn]


class CreateOrderIn(BaseModel):
    """Create-order request; ``payment_method`` makes it a one-step checkout."""

    customer_email: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    shipping_address: Optional[ShippingAddressIn] = None
    items: Optional[list[OrderItemIn]] = None
    amount_in_cents: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = None
    payment_method: Optional[PaymentMethodIn] = None
    redirect_url: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v2 = v.upper()
        if not CURRENCY_RE.match(v2):
            raise ValueError("Invalid currency code")
        return v2

    @field_validator("customer_email")
    @classmethod
    def strip_email(cls, v: Optional[str]) -> Optional[str]:
        return v.strip() if isinstance(v, str) else v

    def to_command(self) -> CreateOrderCommand:
        return CreateOrderCommand(
            customer_email=self.customer_email,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
            shipping_address=self.shipping_address.model_dump() if self.shipping_address else None,
            items=[i.model_dump() for i in self.items] if self.items is not None else None,
            amount_in_cents=self.amount_in_cents,
            currency=self.currency,
        )


class PayOrderIn(BaseModel):
    reference: str = Field(min_length=1, max_length=64)
    payment_method: PaymentMethodIn
    redirect_url: Optional[str] = None


class PollParams(BaseModel):
    """Query parameters of the transaction status endpoint."""

    max_attempts: Optional[int] = Field(default=None, ge=1)
    delay: Optional[float] = Field(default=None, ge=0)


class TransactionOut(BaseModel):
    id: Optional[str] = None
    status: str


class OrderOut(BaseModel):
    reference: str
    status: str
    amount_in_cents: int
    currency: str
