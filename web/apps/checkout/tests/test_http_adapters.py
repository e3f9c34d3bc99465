"""Unit tests for the HTTP payment gateway client.

``httpx.Client.get``/``post`` are monkeypatched, so no network is used. The
circuit breaker is replaced per test by the ``fresh_circuit_breaker``
fixture (threshold 3).
"""
import httpx
import pytest

from apps.checkout import http_adapters
from apps.checkout.domain import PaymentMethod, PaymentMethodType, TransactionRequest
from apps.checkout.http_adapters import HttpPaymentGatewayClient
from apps.checkout.signing import integrity_signature
from core.middleware import REQUEST_ID_CTX


class DummyResp:
    """Minimal httpx-like response stub."""

    def __init__(self, status_code=200, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else ""

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture
def client():
    return HttpPaymentGatewayClient(
        base_url="http://gateway.test/v1/",
        public_key="pub_test",
        private_key="prv_test",
        integrity_secret="integrity",
        webhook_secret="events",
        timeout=1.0,
    )


def _request(reference="ORDER-1-1000"):
    return TransactionRequest(
        acceptance_token="acc",
        amount_in_cents=5_950_000,
        currency="COP",
        reference=reference,
        customer_email="ana@example.com",
        payment_method=PaymentMethod(PaymentMethodType.CARD, token="tok_test_ok"),
        full_name="Ana Gomez",
    )


def test_acceptance_token_is_unwrapped(monkeypatch, client):
    seen = {}

    def fake_get(self, url, headers=None, **kw):
        seen["url"] = url
        return DummyResp(200, {"data": {"presigned_acceptance": {"acceptance_token": "acc-1", "permalink": "p", "type": "END_USER_POLICY"}}})

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    resp = client.get_acceptance_token()
    assert resp.success
    assert resp.data["acceptance_token"] == "acc-1"
    assert seen["url"] == "http://gateway.test/v1/merchants/pub_test"


def test_acceptance_token_missing_is_invalid_response(monkeypatch, client):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, {"data": {}}))
    resp = client.get_acceptance_token()
    assert not resp.success
    assert resp.error.kind == "invalid_response"


@pytest.mark.parametrize("acceptance", ["acc-1", ["acc-1"], {"permalink": "p"}])
def test_malformed_acceptance_is_invalid_response(monkeypatch, client, acceptance):
    body = {"data": {"presigned_acceptance": acceptance}}
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, body))
    resp = client.get_acceptance_token()
    assert not resp.success
    assert resp.error.kind == "invalid_response"
    assert resp.error.raw == body["data"]


def test_create_transaction_sends_signature_and_bearer(monkeypatch, client):
    seen = {}

    def fake_post(self, url, json=None, headers=None, **kw):
        seen.update(url=url, json=json, headers=headers)
        return DummyResp(201, {"data": {"id": "tx-1", "status": "PENDING"}})

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    resp = client.create_transaction(_request())

    assert resp.success
    assert resp.status_code == 201
    assert resp.data == {"id": "tx-1", "status": "PENDING"}
    assert seen["url"] == "http://gateway.test/v1/transactions"
    assert seen["headers"]["Authorization"] == "Bearer prv_test"
    assert seen["json"]["signature"] == integrity_signature("ORDER-1-1000", 5_950_000, "COP", "integrity")
    assert seen["json"]["payment_method"] == {"type": "CARD", "token": "tok_test_ok", "installments": 1}


def test_non_2xx_keeps_gateway_error_type_and_raw_body(monkeypatch, client):
    body = {"error": {"type": "INPUT_VALIDATION_ERROR", "reason": "bad token"}}
    monkeypatch.setattr(httpx.Client, "post", lambda self, url, json=None, headers=None, **kw: DummyResp(422, body))
    resp = client.create_transaction(_request())
    assert not resp.success
    assert resp.status_code == 422
    assert resp.error.kind == "INPUT_VALIDATION_ERROR"
    assert resp.error.message == "bad token"
    assert resp.error.raw == body


def test_unparseable_body_is_parse_error(monkeypatch, client):
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(200, None, text="<html>"))
    resp = client.get_transaction("tx-1")
    assert not resp.success
    assert resp.error.kind == "parse_error"
    assert resp.error.raw == "<html>"


def test_create_transaction_is_never_retried(monkeypatch, client):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        calls.append(url)
        raise httpx.ConnectError("boom")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    resp = client.create_transaction(_request())
    assert not resp.success
    assert resp.error.kind == "network_error"
    assert len(calls) == 1


def test_get_transaction_retries_on_5xx(monkeypatch, client):
    responses = [DummyResp(503, {"error": {"type": "UNAVAILABLE"}}), DummyResp(200, {"data": {"id": "tx-1", "status": "APPROVED"}})]
    retry_headers = []

    def fake_get(self, url, headers=None, **kw):
        retry_headers.append(headers["X-Retry-Count"])
        return responses.pop(0)

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    resp = client.get_transaction("tx-1")
    assert resp.success
    assert resp.data["status"] == "APPROVED"
    assert retry_headers == ["0", "1"]


def test_get_transaction_gives_up_after_retry_budget(monkeypatch, client, settings):
    settings.HTTP_RETRY_MAX = 2
    calls = []

    def fake_get(self, url, headers=None, **kw):
        calls.append(url)
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    resp = client.get_transaction("tx-1")
    assert not resp.success
    assert resp.error.kind == "network_error"
    assert len(calls) == 3


def test_circuit_opens_after_consecutive_failures(monkeypatch, client):
    calls = []

    def fake_post(self, url, json=None, headers=None, **kw):
        calls.append(url)
        raise httpx.ConnectError("down")

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    for _ in range(3):
        client.create_transaction(_request())
    assert http_adapters.gateway_circuit_state()["state"] == "OPEN"

    resp = client.create_transaction(_request())
    assert not resp.success
    assert resp.error.kind == "circuit_open"
    assert len(calls) == 3


def test_business_errors_do_not_open_the_circuit(monkeypatch, client):
    body = {"error": {"type": "NOT_FOUND_ERROR", "reason": "missing"}}
    monkeypatch.setattr(httpx.Client, "get", lambda self, url, headers=None, **kw: DummyResp(404, body))
    for _ in range(5):
        assert client.get_transaction("nope").error.kind == "NOT_FOUND_ERROR"
    assert http_adapters.gateway_circuit_state()["state"] == "CLOSED"


def test_request_id_is_forwarded(monkeypatch, client):
    seen = {}

    def fake_get(self, url, headers=None, **kw):
        seen.update(headers)
        return DummyResp(200, {"data": {"id": "tx-1", "status": "PENDING"}})

    monkeypatch.setattr(httpx.Client, "get", fake_get, raising=True)
    token = REQUEST_ID_CTX.set("rid-123")
    try:
        client.get_transaction("tx-1")
    finally:
        REQUEST_ID_CTX.reset(token)
    assert seen["X-Request-ID"] == "rid-123"


def test_webhook_signature_validation_uses_webhook_secret(client):
    from apps.checkout.signing import webhook_signature

    body = b'{"event":"transaction.updated"}'
    assert client.validate_webhook_signature(body, webhook_signature(body, "1", "events"), "1")
    assert not client.validate_webhook_signature(body, webhook_signature(body, "1", "integrity"), "1")


class Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def test_breaker_half_open_probe_closes_on_success():
    clock = Clock()
    cb = http_adapters.CircuitBreaker("t", 2, 10.0, clock=clock)
    cb.on_failure()
    cb.on_failure()
    with pytest.raises(http_adapters.CircuitOpen):
        cb.before_call()

    clock.now = 10.0
    assert cb.state == "HALF_OPEN"
    cb.before_call()
    # Only one probe at a time.
    with pytest.raises(http_adapters.CircuitOpen):
        cb.before_call()
    cb.on_success()
    assert cb.snapshot() == {"name": "t", "state": "CLOSED", "failures": 0}


def test_breaker_failed_probe_reopens():
    clock = Clock()
    cb = http_adapters.CircuitBreaker("t", 1, 5.0, clock=clock)
    cb.on_failure()
    clock.now = 5.0
    cb.before_call()
    cb.on_failure()
    assert cb.state == "OPEN"
    clock.now = 9.0
    assert cb.state == "OPEN"
