"""In-process stub adapter for the payment gateway port.

``PaymentGatewayStub`` implements ``PaymentGatewayPort`` without any network
calls. It is intended for unit tests and local development where
deterministic behavior is useful and the gateway (or its sandbox) is not
reachable.

Outcome rules for ``create_transaction``:

- CARD tokens containing ``declined`` are DECLINED, ``pending`` stay
  PENDING, ``gateway_error`` produce a 422-style failure response; any other
  token is APPROVED.
- NEQUI payments always start PENDING (the wallet owner confirms later);
  use ``settle`` to move them to a final status.
- A reference that already has a PENDING or APPROVED transaction is
  rejected, as the gateway does.
"""

import uuid
from typing import Optional

from .domain import GatewayResponse, PaymentGatewayPort, PaymentMethodType, TransactionRequest
from .signing import integrity_signature, verify_webhook_signature, webhook_signature

STUB_ACCEPTANCE_TOKEN = "stub-acceptance-token"


class PaymentGatewayStub(PaymentGatewayPort):
    """Deterministic gateway stub keeping transactions in memory."""

    def __init__(
        self,
        integrity_secret: str = "stub-integrity",
        webhook_secret: str = "stub-events",
        acceptance_token: Optional[str] = STUB_ACCEPTANCE_TOKEN,
    ):
        self.integrity_secret = integrity_secret
        self.webhook_secret = webhook_secret
        self.acceptance_token = acceptance_token
        self.transactions: dict[str, dict] = {}
        self.created: list[dict] = []

    def generate_signature(self, reference: str, amount_in_cents: int, currency: str) -> str:
        return integrity_signature(reference, amount_in_cents, currency, self.integrity_secret)

    def validate_webhook_signature(self, raw_payload: bytes, signature: str | None, timestamp: str | None) -> bool:
        return verify_webhook_signature(raw_payload, signature, timestamp, self.webhook_secret)

    def sign_webhook(self, raw_payload: bytes, timestamp: str) -> str:
        """Produce the signature the real gateway would send with ``raw_payload``."""
        return webhook_signature(raw_payload, timestamp, self.webhook_secret)

    def get_acceptance_token(self) -> GatewayResponse:
        if not self.acceptance_token:
            return GatewayResponse.fail("invalid_response", "Acceptance token missing from merchant data")
        return GatewayResponse.ok(
            {
                "acceptance_token": self.acceptance_token,
                "permalink": "https://example.invalid/terms.pdf",
                "type": "END_USER_POLICY",
            }
        )

    def create_transaction(self, request: TransactionRequest) -> GatewayResponse:
        method = request.payment_method
        token = (method.token or "").lower()
        if method.type is PaymentMethodType.CARD and "gateway_error" in token:
            body = {"error": {"type": "INPUT_VALIDATION_ERROR", "reason": "Card token rejected"}}
            return GatewayResponse.fail("INPUT_VALIDATION_ERROR", "Card token rejected", raw=body, status_code=422)

        if not self._reference_is_free(request.reference):
            body = {"error": {"type": "INPUT_VALIDATION_ERROR", "reason": "Reference already used"}}
            return GatewayResponse.fail("INPUT_VALIDATION_ERROR", "Reference already used", raw=body, status_code=422)

        if method.type is PaymentMethodType.NEQUI or "pending" in token:
            status = "PENDING"
        elif "declined" in token:
            status = "DECLINED"
        else:
            status = "APPROVED"

        tx = {
            "id": f"stub-{uuid.uuid4().hex[:12]}",
            "reference": request.reference,
            "amount_in_cents": request.amount_in_cents,
            "currency": request.currency,
            "payment_method_type": method.type.value,
            "status": status,
            "status_message": None,
        }
        self.transactions[tx["id"]] = tx
        self.created.append(
            {"request": request, "signature": self.generate_signature(request.reference, request.amount_in_cents, request.currency)}
        )
        return GatewayResponse.ok(dict(tx), status_code=201)

    def _reference_is_free(self, reference: str) -> bool:
        # A reference is reusable once every earlier attempt was declined, voided or errored.
        return all(
            tx["status"] in ("DECLINED", "VOIDED", "ERROR")
            for tx in self.transactions.values()
            if tx["reference"] == reference
        )

    def get_transaction(self, external_id: str) -> GatewayResponse:
        tx = self.transactions.get(external_id)
        if tx is None:
            body = {"error": {"type": "NOT_FOUND_ERROR", "reason": "Transaction not found"}}
            return GatewayResponse.fail("NOT_FOUND_ERROR", "Transaction not found", raw=body, status_code=404)
        return GatewayResponse.ok(dict(tx))

    def settle(self, external_id: str, status: str, message: str | None = None) -> dict:
        """Move a stub transaction to ``status`` and return its new payload."""
        tx = self.transactions[external_id]
        tx["status"] = status
        tx["status_message"] = message
        return dict(tx)
