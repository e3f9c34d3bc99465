"""Payment gateway sandbox built with FastAPI.

Emulates the wire API the checkout backend talks to, so the HTTP gateway
client can be exercised end to end without the real provider:

- ``GET /v1/merchants/{public_key}``: merchant data with the presigned
  acceptance token.
- ``POST /v1/transactions``: validates the bearer private key, the
  acceptance token, the integrity signature and whether the reference is free, then
  stores the transaction as PENDING.
- ``GET /v1/transactions/{id}``: current transaction state.
- ``POST /v1/transactions/{id}/settle``: sandbox-only; finalizes a PENDING
  transaction and, when ``SANDBOX_WEBHOOK_URL`` is set, delivers a signed
  ``transaction.updated`` event.

Responses use the gateway envelopes: ``{"data": ...}`` on success and
``{"error": {"type", "reason"}}`` on failure.
"""

import hashlib
import hmac
import json
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

import httpx
from fastapi import APIRouter, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger
from sqlalchemy import text

from repo import AlreadyFinal, DuplicateReference, SandboxRepo, engine, init_db

PUBLIC_KEY = os.getenv("SANDBOX_PUBLIC_KEY", "pub_test_local")
PRIVATE_KEY = os.getenv("SANDBOX_PRIVATE_KEY", "prv_test_local")
INTEGRITY_SECRET = os.getenv("SANDBOX_INTEGRITY_SECRET", "test_integrity_local")
EVENTS_SECRET = os.getenv("SANDBOX_EVENTS_SECRET", "test_events_local")
ACCEPTANCE_TOKEN = os.getenv("SANDBOX_ACCEPTANCE_TOKEN", "sandbox-acceptance-token")
WEBHOOK_URL = os.getenv("SANDBOX_WEBHOOK_URL", "")
WEBHOOK_TIMEOUT_SECS = float(os.getenv("SANDBOX_WEBHOOK_TIMEOUT_SECS", "5"))

app = FastAPI(title="Payment Gateway Sandbox")
router = APIRouter(prefix="/v1")

Currency = constr(pattern=r"^[A-Z]{3}$")

logger = logging.getLogger("gateway_sandbox")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)


@app.on_event("startup")
def _startup_db():
    # Wait briefly until the database accepts connections.
    deadline = time.time() + 30
    while True:
        try:
            with engine.connect() as conn:
                conn.execute(text("select 1"))
            break
        except Exception:
            if time.time() > deadline:
                raise
            time.sleep(1)
    init_db()


def _sha256_hex(*parts) -> str:
    h = hashlib.sha256()
    for part in parts:
        h.update(part if isinstance(part, bytes) else str(part).encode("utf-8"))
    return h.hexdigest()


def _error(status_code: int, type_: str, reason: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"type": type_, "reason": reason, **extra}})


def _authorized(authorization: Optional[str]) -> bool:
    expected = f"Bearer {PRIVATE_KEY}"
    return bool(authorization) and hmac.compare_digest(authorization, expected)


@app.exception_handler(RequestValidationError)
async def _validation_error(_request: Request, exc: RequestValidationError):
    messages = [".".join(str(p) for p in e["loc"][1:]) + ": " + e["msg"] for e in exc.errors()]
    return _error(422, "INPUT_VALIDATION_ERROR", "Invalid request body", messages=messages)


class PaymentMethodIn(BaseModel):
    type: Literal["CARD", "NEQUI"]
    token: Optional[str] = None
    phone_number: Optional[str] = None
    installments: int = Field(default=1, ge=1)


class TransactionIn(BaseModel):
    """Body of ``POST /v1/transactions``.

    Attributes:
        acceptance_token: Token from the merchant endpoint; must match.
        signature: sha256(reference + amount_in_cents + currency + secret).
    """

    acceptance_token: str
    amount_in_cents: int = Field(gt=0)
    currency: Currency
    reference: str = Field(min_length=1, max_length=64)
    customer_email: Optional[str] = None
    payment_method: PaymentMethodIn
    signature: str
    customer_data: Optional[dict] = None
    shipping_address: Optional[dict] = None
    redirect_url: Optional[str] = None


class SettleIn(BaseModel):
    status: Literal["APPROVED", "DECLINED", "VOIDED", "ERROR"]
    status_message: Optional[str] = None


@app.get("/health")
def health():
    return {"ok": True}


@router.get("/merchants/{public_key}")
def merchant(public_key: str):
    if public_key != PUBLIC_KEY:
        return _error(404, "NOT_FOUND_ERROR", "Merchant not found")
    return {
        "data": {
            "id": 1,
            "name": "Sandbox merchant",
            "public_key": PUBLIC_KEY,
            "presigned_acceptance": {
                "acceptance_token": ACCEPTANCE_TOKEN,
                "permalink": "https://sandbox.invalid/terms.pdf",
                "type": "END_USER_POLICY",
            },
        }
    }


@router.post("/transactions", status_code=201)
def create_transaction(
    req: TransactionIn,
    authorization: Annotated[Optional[str], Header()] = None,
):
    """Accept a transaction in PENDING status.

    Failures: 401 without the merchant private key; 422 for a wrong
    acceptance token, a bad integrity signature, a CARD without token, a
    NEQUI without phone number or a reused reference.
    """
    if not _authorized(authorization):
        return _error(401, "AUTHENTICATION_ERROR", "Invalid or missing private key")
    if not hmac.compare_digest(req.acceptance_token, ACCEPTANCE_TOKEN):
        return _error(422, "INPUT_VALIDATION_ERROR", "Invalid acceptance token")

    expected = _sha256_hex(req.reference, req.amount_in_cents, req.currency, INTEGRITY_SECRET)
    if not hmac.compare_digest(req.signature.lower(), expected):
        logger.warning("integrity signature mismatch", extra={"reference": req.reference})
        return _error(422, "INPUT_VALIDATION_ERROR", "Invalid integrity signature")

    method = req.payment_method
    if method.type == "CARD" and not method.token:
        return _error(422, "INPUT_VALIDATION_ERROR", "Card token is required")
    if method.type == "NEQUI" and not method.phone_number:
        return _error(422, "INPUT_VALIDATION_ERROR", "Phone number is required")

    try:
        tx = SandboxRepo().create_tx(
            reference=req.reference,
            amount_in_cents=req.amount_in_cents,
            currency=req.currency,
            customer_email=req.customer_email,
            payment_method=method.model_dump(),
        )
    except DuplicateReference:
        return _error(422, "INPUT_VALIDATION_ERROR", "Reference already used")

    logger.info("transaction accepted", extra={"reference": req.reference, "transaction_id": tx["id"]})
    return {"data": tx}


@router.get("/transactions/{tx_id}")
def get_transaction(tx_id: str, authorization: Annotated[Optional[str], Header()] = None):
    if not _authorized(authorization):
        return _error(401, "AUTHENTICATION_ERROR", "Invalid or missing private key")
    tx = SandboxRepo().get_tx(tx_id)
    if tx is None:
        return _error(404, "NOT_FOUND_ERROR", "Transaction not found")
    return {"data": tx}


@router.post("/transactions/{tx_id}/settle")
def settle_transaction(tx_id: str, req: SettleIn, authorization: Annotated[Optional[str], Header()] = None):
    """Finalize a PENDING transaction and notify the merchant."""
    if not _authorized(authorization):
        return _error(401, "AUTHENTICATION_ERROR", "Invalid or missing private key")
    try:
        tx = SandboxRepo().settle(tx_id, req.status, req.status_message)
    except AlreadyFinal as e:
        return _error(409, "CONFLICT_ERROR", f"Transaction already {e}")
    if tx is None:
        return _error(404, "NOT_FOUND_ERROR", "Transaction not found")

    logger.info("transaction settled", extra={"transaction_id": tx_id, "status": req.status})
    delivered = notify_merchant(tx)
    return {"data": tx, "webhook_delivered": delivered}


def build_event(tx: dict, timestamp: int) -> dict:
    return {
        "event": "transaction.updated",
        "data": {"transaction": tx},
        "sent_at": datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(),
        "timestamp": timestamp,
    }


def _post_event(url: str, body: bytes, headers: dict) -> httpx.Response:
    with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECS) as client:
        return client.post(url, content=body, headers=headers)


def notify_merchant(tx: dict) -> Optional[bool]:
    """POST a signed ``transaction.updated`` event to ``WEBHOOK_URL``.

    Returns None when no webhook URL is configured, otherwise whether the
    merchant answered 2xx. Delivery failures are logged, not raised.
    """
    if not WEBHOOK_URL:
        return None
    ts = int(time.time())
    body = json.dumps(build_event(tx, ts), separators=(",", ":")).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "X-Signature": _sha256_hex(body, str(ts), EVENTS_SECRET),
        "X-Timestamp": str(ts),
    }
    try:
        resp = _post_event(WEBHOOK_URL, body, headers)
    except httpx.RequestError as e:
        logger.error("webhook delivery failed", extra={"transaction_id": tx["id"], "error": str(e)})
        return False
    ok = 200 <= resp.status_code < 300
    log = logger.info if ok else logger.warning
    log("webhook delivered", extra={"transaction_id": tx["id"], "status_code": resp.status_code})
    return ok


app.include_router(router)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
