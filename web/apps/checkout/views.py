"""HTTP views for the checkout app.

Views stay small: they parse the request with a pydantic schema, hand a
command to a service obtained from ``providers`` and translate the
``Ok``/``Err`` outcome into a response. Failures share the body shape
``{"detail": KIND, "message": ..., "details": {...}}`` and the status code
given by ``CheckoutError.http_status``.

Idempotency: when an ``Idempotency-Key`` header is sent to the create-order
endpoint, the first request is processed and its response stored; retries
with the same payload replay it (``Idempotent-Replay: true``) and a reused
key with a different payload returns 409.
"""

import logging
import time

from django.conf import settings
from pydantic import ValidationError
from rest_framework import status
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .idempotency import finalize, get_or_create_idempotent, is_in_progress, release
from .result import Err, ErrorKind, server_error
from .schemas import CreateOrderIn, OrderOut, PayOrderIn, PollParams, QuoteIn, TransactionOut

logger = logging.getLogger("checkout.api")


def _invalid_body(e: ValidationError) -> Response:
    return Response(
        {
            "detail": "VALIDATION_ERROR",
            "message": "Invalid request",
            "details": {"errors": e.errors(include_url=False, include_context=False)},
        },
        status=status.HTTP_400_BAD_REQUEST,
    )


def _error_response(err: Err) -> Response:
    return Response(err.error.as_body(), status=err.error.http_status)


def _transaction_body(tx) -> dict:
    return TransactionOut(id=tx.external_id, status=tx.status.value).model_dump()


class CheckoutAPIView(APIView):
    """Base view: no session auth (public storefront API), scoped throttling."""

    authentication_classes = []
    permission_classes = [AllowAny]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout_read"


class QuoteView(CheckoutAPIView):
    """Server-authoritative price breakdown for a cart."""

    def post(self, request):
        try:
            dto = QuoteIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid_body(e)

        result = providers.build_create_order_service().quote([i.model_dump() for i in dto.items])
        if isinstance(result, Err):
            return _error_response(result)
        return Response(result.value.as_dict(), status=status.HTTP_200_OK)


class OrdersCollectionView(CheckoutAPIView):
    """Create an order and, when a payment method is included, pay it.

    Responses:
        - 201 ``{order, transaction?}`` when the order is created (and the
          payment, if any, was accepted by the gateway).
        - 200 replay of a stored response for a repeated Idempotency-Key.
        - 400 validation errors, including amount mismatches.
        - 402 when the gateway rejected the payment; the order is kept and
          can be paid again through the payments endpoint.
        - 409 ``IDEMPOTENCY_CONFLICT`` / ``IDEMPOTENCY_IN_PROGRESS``.
        - 500 storage or gateway availability failures (nothing persisted).
    """

    throttle_scope = "checkout_create"

    def post(self, request):
        idem_key = request.headers.get("Idempotency-Key")

        try:
            dto = CreateOrderIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid_body(e)

        rec = None
        if idem_key:
            try:
                existing, rec = get_or_create_idempotent(idem_key, request.data)
            except ValueError:
                return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
            if existing:
                if is_in_progress(rec):
                    return Response({"detail": "IDEMPOTENCY_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
                resp = Response(rec.response_body, status=rec.response_status)
                resp["Idempotent-Replay"] = "true"
                return resp

        method = dto.payment_method.to_domain() if dto.payment_method else None
        try:
            result = providers.build_checkout_service().checkout(dto.to_command(), method, dto.redirect_url)
        except Exception:
            if rec:
                release(rec)
            raise

        if isinstance(result, Err):
            body = result.error.as_body()
            code = result.error.http_status
            if rec:
                if result.error.kind is ErrorKind.SERVER_ERROR:
                    release(rec)
                else:
                    finalize(rec, code, body, order_reference=result.error.details.get("reference"))
            return Response(body, status=code)

        outcome = result.value
        order = outcome.created.order
        body = {
            "order": OrderOut(
                reference=order.reference,
                status=(outcome.payment.order_status if outcome.payment else order.status).value,
                amount_in_cents=order.amount_in_cents,
                currency=order.currency,
            ).model_dump(),
            "breakdown": outcome.created.breakdown.as_dict(),
        }
        if outcome.payment:
            body["transaction"] = _transaction_body(outcome.payment.transaction)

        if rec:
            finalize(rec, status.HTTP_201_CREATED, body, order_reference=order.reference)
        return Response(body, status=status.HTTP_201_CREATED)


class OrderDetailView(CheckoutAPIView):
    def get(self, request, reference: str):
        result = providers.build_order_lookup().get_by_reference(reference)
        if isinstance(result, Err):
            return _error_response(result)
        return Response(result.value, status=status.HTTP_200_OK)


class PaymentsView(CheckoutAPIView):
    """Pay an existing order (first attempt or retry after a failure)."""

    throttle_scope = "checkout_create"

    def post(self, request):
        try:
            dto = PayOrderIn.model_validate(request.data)
        except ValidationError as e:
            return _invalid_body(e)

        processor = providers.build_payment_processor()
        result = processor.pay_reference(dto.reference, dto.payment_method.to_domain(), dto.redirect_url)
        if isinstance(result, Err):
            return _error_response(result)

        outcome = result.value
        return Response(
            {
                "order": {"reference": outcome.order_reference, "status": outcome.order_status.value},
                "transaction": _transaction_body(outcome.transaction),
            },
            status=status.HTTP_200_OK,
        )


class TransactionStatusView(CheckoutAPIView):
    """Poll the gateway for a transaction's final status.

    ``max_attempts`` is capped by ``CHECKOUT_POLL_MAX_ATTEMPTS_CAP``. A result
    with ``final`` and status ``PENDING`` means the budget ran out; the
    client may poll again.
    """

    throttle_scope = "checkout_poll"

    def get(self, request, external_id: str):
        try:
            params = PollParams.model_validate(request.query_params.dict())
        except ValidationError as e:
            return _invalid_body(e)

        cap = getattr(settings, "CHECKOUT_POLL_MAX_ATTEMPTS_CAP", 10)
        max_attempts = min(params.max_attempts or settings.CHECKOUT_POLL_MAX_ATTEMPTS, cap)
        delay = params.delay if params.delay is not None else settings.CHECKOUT_POLL_DELAY_SECS
        deadline = None
        budget = getattr(settings, "CHECKOUT_POLL_DEADLINE_SECS", None)
        if budget:
            deadline = time.monotonic() + budget

        result = providers.build_reconciler().poll(external_id, max_attempts, delay, deadline=deadline)
        if isinstance(result, Err):
            return _error_response(result)
        return Response(result.value.as_dict(), status=status.HTTP_200_OK)


class AcceptanceTokenView(CheckoutAPIView):
    """Expose the merchant acceptance token the storefront must show."""

    def get(self, request):
        resp = providers.get_gateway().get_acceptance_token()
        if not resp.success:
            logger.error("acceptance token unavailable", extra={"kind": resp.error.kind if resp.error else None})
            return _error_response(
                server_error(
                    "Failed to get acceptance token",
                    gateway_error=resp.error.as_dict() if resp.error else None,
                )
            )
        return Response({"data": resp.data}, status=status.HTTP_200_OK)


class WebhookView(CheckoutAPIView):
    """Gateway ``transaction.updated`` notifications.

    The raw body is read before anything touches ``request.data`` so the
    signature is checked against the exact bytes the gateway signed.
    """

    throttle_classes = []

    def post(self, request):
        raw = request.body
        ack = providers.build_webhook_handler().handle(
            raw,
            request.headers.get("X-Signature"),
            request.headers.get("X-Timestamp"),
        )
        return Response(ack.body, status=ack.status_code)
