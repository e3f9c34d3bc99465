"""Convergence point for payment status updates.

A payment's outcome reaches us three ways: the synchronous gateway response
to transaction creation, client-driven polling and the gateway's webhook.
They can arrive in any order and more than once. All three funnel through
``StatusReconciler.apply_status``, which:

1. writes the transaction only while it is still PENDING (compare-and-set),
2. maps the gateway status onto the order, never moving an approved or
   cancelled order,
3. runs the approval side effects (stock decrement, delivery assignment)
   only when the order's own transition into ``approved`` wins.

A late or duplicated update therefore degrades to a no-op instead of an
error or a second side effect.
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterator, Optional

from .domain import (
    OPEN_ORDER_STATUSES,
    CatalogPort,
    DeliveryRepository,
    Order,
    OrderRepository,
    OrderStatus,
    PaymentGatewayPort,
    RepositoryError,
    Transaction,
    TransactionRepository,
    TransactionStatus,
    UnitOfWork,
    order_status_for,
)
from .result import Err, Ok, Result, not_found, server_error

logger = logging.getLogger("checkout.reconciliation")

WEBHOOK_EVENT_TRANSACTION_UPDATED = "transaction.updated"
STILL_PENDING_MESSAGE = "Transaction is still being processed"


@dataclass(frozen=True)
class ApplyOutcome:
    """What ``apply_status`` did.

    Attributes:
        transaction: The transaction as stored after the call.
        applied: True when this call won the compare-and-set.
        order_status: The order's status after the call, if the order exists.
        side_effects_applied: True when this call ran the approval effects.
    """

    transaction: Transaction
    applied: bool
    order_status: Optional[OrderStatus] = None
    side_effects_applied: bool = False


@dataclass(frozen=True)
class PollResult:
    status: str
    attempts: int
    final: bool
    transaction: Optional[dict] = None
    message: Optional[str] = None

    def as_dict(self) -> dict:
        body: dict[str, Any] = {"status": self.status, "attempts": self.attempts, "final": self.final}
        if self.transaction is not None:
            body["transaction"] = self.transaction
        if self.message:
            body["message"] = self.message
        return body


class StatusReconciler:
    """Applies gateway statuses to transactions and orders exactly once."""

    def __init__(
        self,
        orders: OrderRepository,
        transactions: TransactionRepository,
        deliveries: DeliveryRepository,
        catalog: CatalogPort,
        gateway: PaymentGatewayPort,
        uow: UnitOfWork,
        delivery_eta_days: int = 3,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.orders = orders
        self.transactions = transactions
        self.deliveries = deliveries
        self.catalog = catalog
        self.gateway = gateway
        self.uow = uow
        self.delivery_eta_days = delivery_eta_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._monotonic = monotonic

    # ---- single transition routine ----

    def apply_status(self, tx: Transaction, gateway_status: Any, payload: Any) -> Result[ApplyOutcome]:
        """Apply ``gateway_status`` to ``tx`` and its order.

        Args:
            tx: The local transaction (as last read by the caller).
            gateway_status: Status string reported by the gateway.
            payload: Raw gateway transaction payload, stored verbatim.

        Returns:
            Ok(ApplyOutcome) in every non-storage case, including no-ops for
            already-terminal transactions and unknown statuses;
            Err(server_error) when persistence fails (all writes of this
            call are rolled back).
        """
        status = TransactionStatus.parse(gateway_status)
        if tx.is_terminal:
            logger.info(
                "transaction already final; update ignored",
                extra={"reference": tx.reference, "stored": tx.status.value, "incoming": str(gateway_status)},
            )
            return Ok(ApplyOutcome(transaction=tx, applied=False))
        if status is None:
            logger.warning(
                "unknown gateway status; update ignored",
                extra={"reference": tx.reference, "incoming": str(gateway_status)},
            )
            return Ok(ApplyOutcome(transaction=tx, applied=False))

        try:
            with self.uow.atomic():
                if not self.transactions.update_if_pending(tx.id, status, payload):
                    # Lost the race against another update path.
                    current = self.transactions.get(tx.id) or tx
                    return Ok(ApplyOutcome(transaction=current, applied=False))

                updated = self.transactions.get(tx.id)
                order = self.orders.get_by_reference(tx.reference)
                if order is None:
                    logger.warning("no order for transaction", extra={"reference": tx.reference})
                    return Ok(ApplyOutcome(transaction=updated, applied=True))

                side_effects = self._transition_order(order, status)
                current_order = self.orders.get(order.id)
        except RepositoryError as e:
            logger.exception("status update failed", extra={"reference": tx.reference})
            return server_error("Failed to apply transaction status", reason=str(e))

        logger.info(
            "transaction status applied",
            extra={
                "reference": tx.reference,
                "status": status.value,
                "order_status": current_order.status.value if current_order else None,
                "side_effects": side_effects,
            },
        )
        return Ok(
            ApplyOutcome(
                transaction=updated,
                applied=True,
                order_status=current_order.status if current_order else None,
                side_effects_applied=side_effects,
            )
        )

    def _transition_order(self, order: Order, status: TransactionStatus) -> bool:
        target = order_status_for(status)
        if status is TransactionStatus.PENDING:
            self.orders.transition_status(order.id, target, {OrderStatus.PENDING})
            return False

        moved = self.orders.transition_status(order.id, target, OPEN_ORDER_STATUSES)
        if not moved:
            logger.info(
                "order not moved", extra={"reference": order.reference, "order_status": order.status.value}
            )
            return False
        if target is OrderStatus.APPROVED:
            self._apply_approval_side_effects(order)
            return True
        return False

    def _apply_approval_side_effects(self, order: Order) -> None:
        for item in order.items:
            self.catalog.decrement_stock(item.product_id, item.quantity)
        if order.delivery_id is not None:
            eta = self._clock() + timedelta(days=self.delivery_eta_days)
            self.deliveries.assign(order.delivery_id, eta)

    # ---- polling ----

    def iter_poll(
        self,
        external_id: str,
        max_attempts: int,
        delay_seconds: float,
        backoff: float = 1.0,
        deadline: Optional[float] = None,
    ) -> Iterator[Result[PollResult]]:
        """Poll the gateway, yielding one result per attempt.

        Intermediate results have ``final=False``. The last result is final:
        either the applied terminal status, or PENDING when the attempt
        budget (or the caller's ``deadline`` on the monotonic clock) runs
        out first.
        """
        try:
            tx = self.transactions.get_by_external_id(external_id)
        except RepositoryError as e:
            yield server_error("Failed to load transaction", reason=str(e))
            return
        if tx is None:
            yield not_found(f"Transaction {external_id} not found")
            return
        if tx.is_terminal:
            yield Ok(PollResult(tx.status.value, 0, True, tx.payment_data))
            return

        max_attempts = max(1, int(max_attempts))
        delay = float(delay_seconds)
        attempts = 0
        while attempts < max_attempts:
            attempts += 1
            resp = self.gateway.get_transaction(external_id)
            if not resp.success:
                yield server_error(
                    "Failed to fetch transaction from payment gateway",
                    gateway_error=resp.error.as_dict() if resp.error else None,
                    attempts=attempts,
                )
                return

            payload = resp.data if isinstance(resp.data, dict) else {}
            status = TransactionStatus.parse(payload.get("status"))
            if status is not None and status.is_terminal:
                applied = self.apply_status(tx, status, payload)
                if isinstance(applied, Err):
                    yield applied
                    return
                stored = applied.value.transaction
                yield Ok(PollResult(stored.status.value, attempts, True, payload))
                return

            if attempts >= max_attempts:
                break
            if deadline is not None and self._monotonic() + delay >= deadline:
                break
            yield Ok(PollResult(TransactionStatus.PENDING.value, attempts, False, payload, STILL_PENDING_MESSAGE))
            if delay > 0:
                self._sleep(delay)
            delay *= backoff

        yield Ok(PollResult(TransactionStatus.PENDING.value, attempts, True, None, STILL_PENDING_MESSAGE))

    def poll(self, external_id: str, max_attempts: int, delay_seconds: float, **kwargs) -> Result[PollResult]:
        """Run ``iter_poll`` to completion and return its final result."""
        last = None
        for last in self.iter_poll(external_id, max_attempts, delay_seconds, **kwargs):
            pass
        return last


# ---- webhook ----

@dataclass(frozen=True)
class WebhookAck:
    status_code: int
    body: dict


class WebhookHandler:
    """Verifies and applies gateway ``transaction.updated`` notifications.

    Once the signature passes, the answer is always HTTP 200, even when the
    event is ignored or processing fails, so the gateway does not enter a
    redelivery loop. Only signature failures produce 401.
    """

    def __init__(self, gateway: PaymentGatewayPort, transactions: TransactionRepository, reconciler: StatusReconciler):
        self.gateway = gateway
        self.transactions = transactions
        self.reconciler = reconciler

    def handle(self, raw_body: bytes, signature: str | None, timestamp: str | None) -> WebhookAck:
        if not self.gateway.validate_webhook_signature(raw_body, signature, timestamp):
            logger.warning("webhook signature rejected", extra={"timestamp": timestamp})
            return WebhookAck(401, {"detail": "INVALID_SIGNATURE"})
        try:
            return self._process(raw_body)
        except Exception:
            logger.exception("webhook processing failed")
            return WebhookAck(200, {"success": False, "message": "Error processing event"})

    def _process(self, raw_body: bytes) -> WebhookAck:
        try:
            event = json.loads(raw_body)
        except ValueError:
            logger.warning("webhook body is not valid JSON")
            return WebhookAck(200, {"success": False, "message": "Malformed payload"})

        event_type = event.get("event") if isinstance(event, dict) else None
        if event_type != WEBHOOK_EVENT_TRANSACTION_UPDATED:
            logger.info("webhook event ignored", extra={"event": event_type})
            return WebhookAck(200, {"success": True, "message": "Event ignored"})

        data = event.get("data") or {}
        payload = data.get("transaction") if isinstance(data, dict) else None
        external_id = payload.get("id") if isinstance(payload, dict) else None
        if not external_id:
            logger.warning("webhook event without transaction id")
            return WebhookAck(200, {"success": False, "message": "Event without transaction"})

        tx = self.transactions.get_by_external_id(str(external_id))
        if tx is None:
            # Acknowledge so the gateway stops redelivering.
            logger.warning("webhook for unknown transaction", extra={"external_id": external_id})
            return WebhookAck(200, {"success": True, "ignored": True, "message": "Transaction not found"})

        result = self.reconciler.apply_status(tx, payload.get("status"), payload)
        if isinstance(result, Err):
            logger.error("webhook status not applied", extra={"external_id": external_id, "reason": result.error.message})
            return WebhookAck(200, {"success": False, "message": result.error.message})

        outcome = result.value
        return WebhookAck(
            200,
            {"success": True, "applied": outcome.applied, "status": outcome.transaction.status.value},
        )
