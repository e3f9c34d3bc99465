"""HTTP client for the payment gateway with retries and a circuit breaker.

This module implements ``PaymentGatewayPort`` on top of ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set by
    ``core.middleware.RequestIdMiddleware``.
- A circuit breaker around the gateway so an unhealthy provider is not
    hammered, with HALF_OPEN probing after a timeout.
- Retry with exponential backoff for transport errors and 5xx, applied to
    the read-only calls only. Transaction creation is never retried because
    it is not idempotent on the gateway side.
- Uniform outcomes: every call returns a ``GatewayResponse``; transport
    failures, non-2xx responses and malformed JSON become ``success=False``
    values instead of exceptions.
"""

import logging
import threading
import time
from typing import Optional

import httpx
from django.conf import settings

from core.middleware import REQUEST_ID_CTX

from .domain import GatewayResponse, PaymentGatewayPort, TransactionRequest
from .signing import integrity_signature, verify_webhook_signature

logger = logging.getLogger("checkout.gateway")


# ---------------- Circuit Breaker ---------------- #

class CircuitOpen(Exception):
    """Raised by ``CircuitBreaker.before_call`` when a call must not be made."""


class CircuitBreaker:
    """Circuit breaker guarding the payment gateway.

    CLOSED counts consecutive failures and opens at ``fail_threshold``. OPEN
    rejects calls until ``reset_timeout`` seconds have passed, then becomes
    HALF_OPEN, which lets exactly one probe through: success closes the
    circuit, failure reopens it. Thread-safe.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float, clock=time.monotonic):
        self.name = name
        self.fail_threshold = max(1, int(fail_threshold))
        self.reset_timeout = float(reset_timeout)
        self._clock = clock
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"
        self._opened_at = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> str:
        with self._lock:
            if self._state == "OPEN" and self._clock() - self._opened_at >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._probe_in_flight = False
            return self._state

    def snapshot(self) -> dict:
        with self._lock:
            return {"name": self.name, "state": self.state, "failures": self._failures}

    def before_call(self) -> None:
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen(f"{self.name} circuit open")
            if st == "HALF_OPEN":
                if self._probe_in_flight:
                    raise CircuitOpen(f"{self.name} circuit half-open, probe in flight")
                self._probe_in_flight = True

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            tripped = self._state == "HALF_OPEN" or (self._state == "CLOSED" and self._failures >= self.fail_threshold)
            if tripped:
                self._state = "OPEN"
                self._opened_at = self._clock()
                self._probe_in_flight = False
                logger.warning("circuit opened", extra={"circuit": self.name, "failures": self._failures})

    def on_finish(self):
        """Release the HALF_OPEN probe slot once the call is over."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._probe_in_flight = False


_gateway_cb = CircuitBreaker(
    "payment_gateway",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def gateway_circuit_state() -> dict:
    return _gateway_cb.snapshot()


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {"Accept": "application/json"}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 2),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception]) -> bool:
    """Retry only on transport exceptions or HTTP 5xx."""
    if exc is not None:
        return True
    if resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def _parse_response(resp) -> GatewayResponse:
    """Translate an HTTP response into a ``GatewayResponse``.

    2xx bodies are unwrapped from the gateway's ``{"data": ...}`` envelope.
    Error bodies keep the gateway's ``error.type`` as the failure kind.
    """
    try:
        body = resp.json()
    except ValueError:
        return GatewayResponse.fail(
            "parse_error",
            "Failed to parse response",
            raw=getattr(resp, "text", None),
            status_code=resp.status_code,
        )

    if 200 <= resp.status_code < 300:
        data = body.get("data", body) if isinstance(body, dict) else body
        return GatewayResponse.ok(data, status_code=resp.status_code)

    err = body.get("error") if isinstance(body, dict) else None
    if not isinstance(err, dict):
        err = {}
    kind = err.get("type") or "unknown_error"
    message = err.get("reason") or err.get("message") or "Unknown error occurred"
    return GatewayResponse.fail(str(kind), str(message), raw=body, status_code=resp.status_code)


# ---------------- Gateway Adapter ---------------- #

class HttpPaymentGatewayClient(PaymentGatewayPort):
    """Wire adapter for the external payment gateway.

    Args:
        base_url: Gateway API root (sandbox or production).
        public_key: Merchant public key, used to fetch acceptance tokens.
        private_key: Merchant private key, sent as a bearer token.
        integrity_secret: Secret mixed into outbound integrity signatures.
        webhook_secret: Secret used to verify inbound webhook signatures.
        timeout: Per-request timeout in seconds.
    """

    def __init__(
        self,
        base_url: str | None = None,
        public_key: str | None = None,
        private_key: str | None = None,
        integrity_secret: str | None = None,
        webhook_secret: str | None = None,
        timeout: float | None = None,
    ):
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_BASE_URL).rstrip("/")
        self.public_key = public_key or settings.PAYMENT_GATEWAY_PUBLIC_KEY
        self.private_key = private_key or settings.PAYMENT_GATEWAY_PRIVATE_KEY
        self.integrity_secret = integrity_secret or settings.PAYMENT_GATEWAY_INTEGRITY_SECRET
        self.webhook_secret = webhook_secret or settings.PAYMENT_GATEWAY_WEBHOOK_SECRET
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    # -- signatures --

    def generate_signature(self, reference: str, amount_in_cents: int, currency: str) -> str:
        return integrity_signature(reference, amount_in_cents, currency, self.integrity_secret)

    def validate_webhook_signature(self, raw_payload: bytes, signature: str | None, timestamp: str | None) -> bool:
        return verify_webhook_signature(raw_payload, signature, timestamp, self.webhook_secret)

    # -- remote calls --

    def get_acceptance_token(self) -> GatewayResponse:
        """Fetch the merchant's presigned acceptance token.

        Returns:
            GatewayResponse: on success ``data`` is the ``presigned_acceptance``
            object (``acceptance_token``, ``permalink``, ``type``).
        """
        result = self._send("get", f"/merchants/{self.public_key}", retry=True)
        if not result.success:
            return result
        acceptance = (result.data or {}).get("presigned_acceptance") if isinstance(result.data, dict) else None
        if not isinstance(acceptance, dict) or not acceptance.get("acceptance_token"):
            return GatewayResponse.fail(
                "invalid_response", "Acceptance token missing from merchant data", raw=result.data,
                status_code=result.status_code,
            )
        return GatewayResponse.ok(acceptance, status_code=result.status_code)

    def create_transaction(self, request: TransactionRequest) -> GatewayResponse:
        """Create a gateway transaction; the integrity signature is always attached."""
        payload = {
            "acceptance_token": request.acceptance_token,
            "amount_in_cents": request.amount_in_cents,
            "currency": request.currency,
            "customer_email": request.customer_email,
            "payment_method": request.payment_method.as_gateway_payload(),
            "reference": request.reference,
            "customer_data": {
                "phone_number": request.phone_number,
                "full_name": request.full_name,
            },
            "shipping_address": request.shipping_address,
            "redirect_url": request.redirect_url,
            "signature": self.generate_signature(request.reference, request.amount_in_cents, request.currency),
        }
        return self._send("post", "/transactions", json=payload, auth=True, retry=False)

    def get_transaction(self, external_id: str) -> GatewayResponse:
        return self._send("get", f"/transactions/{external_id}", auth=True, retry=True)

    def _send(self, method: str, path: str, json: dict | None = None, auth: bool = False, retry: bool = False) -> GatewayResponse:
        """Perform one logical call, with retries when ``retry`` is set.

        Business responses (any non-5xx) close the breaker; only transport
        errors and 5xx that survive the retry budget count as failures.
        """
        max_retries, backoff = _retry_policy() if retry else (0, 0.0)
        url = f"{self.base_url}{path}"

        try:
            _gateway_cb.before_call()
        except CircuitOpen as e:
            logger.warning("gateway call short-circuited", extra={"path": path, "reason": str(e)})
            return GatewayResponse.fail("circuit_open", str(e))

        extras = {"X-Retry-Count": "0"}
        if auth:
            extras["Authorization"] = f"Bearer {self.private_key}"
        headers = _request_headers(extras)
        tries = 0

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        if method == "post":
                            resp = client.post(url, json=json, headers=headers)
                        else:
                            resp = client.get(url, headers=headers)
                        if not _should_retry(resp, None):
                            _gateway_cb.on_success()
                            return _parse_response(resp)
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    if tries > max_retries:
                        _gateway_cb.on_failure()
                        if exc is not None:
                            logger.error("gateway transport error", extra={"path": path, "error": str(exc)})
                            return GatewayResponse.fail("network_error", str(exc) or exc.__class__.__name__)
                        return _parse_response(resp)

                    headers["X-Retry-Count"] = str(tries)
                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    if sleep_s > 0:
                        time.sleep(min(sleep_s, cap))
        finally:
            _gateway_cb.on_finish()
