"""Success/failure values returned by the checkout services.

Orchestration steps return either ``Ok(value)`` or ``Err(error)`` instead of
raising, so callers (views, webhook handler, polling endpoint) branch on the
outcome explicitly. ``CheckoutError.kind`` drives the HTTP status mapping.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Error taxonomy shared by every checkout operation."""

    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    PAYMENT_FAILED = "payment_failed"
    SERVER_ERROR = "server_error"


HTTP_STATUS_BY_KIND = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.PAYMENT_FAILED: 402,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SERVER_ERROR: 500,
}


@dataclass(frozen=True)
class CheckoutError:
    """A typed failure.

    Attributes:
        kind: Category of the failure.
        message: Human readable explanation.
        details: Optional structured context (missing fields, amount
            breakdown, raw gateway error...).
    """

    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_KIND[self.kind]

    def as_body(self) -> dict:
        body: dict[str, Any] = {"detail": self.kind.value.upper(), "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


@dataclass(frozen=True)
class Ok(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Err:
    error: CheckoutError

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Err]


def validation_error(message: str, **details) -> Err:
    return Err(CheckoutError(ErrorKind.VALIDATION_ERROR, message, details))


def not_found(message: str, **details) -> Err:
    return Err(CheckoutError(ErrorKind.NOT_FOUND, message, details))


def server_error(message: str, **details) -> Err:
    return Err(CheckoutError(ErrorKind.SERVER_ERROR, message, details))


def payment_failed(message: str, **details) -> Err:
    return Err(CheckoutError(ErrorKind.PAYMENT_FAILED, message, details))
