"""Sandbox wire API tests on in-memory SQLite."""
import hashlib
import json

import httpx

import main


def signed_body(reference="ORDER-1-1000", amount=5_950_000, currency="COP", **overrides):
    sig = hashlib.sha256(f"{reference}{amount}{currency}{main.INTEGRITY_SECRET}".encode()).hexdigest()
    body = {
        "acceptance_token": main.ACCEPTANCE_TOKEN,
        "amount_in_cents": amount,
        "currency": currency,
        "reference": reference,
        "customer_email": "ana@example.com",
        "payment_method": {"type": "CARD", "token": "tok_test", "installments": 1},
        "signature": sig,
    }
    body.update(overrides)
    return body


def test_merchant_exposes_acceptance_token(api):
    r = api.get(f"/v1/merchants/{main.PUBLIC_KEY}")
    assert r.status_code == 200
    assert r.json()["data"]["presigned_acceptance"]["acceptance_token"] == main.ACCEPTANCE_TOKEN
    assert r.headers["X-Request-ID"]


def test_unknown_merchant_is_404(api):
    r = api.get("/v1/merchants/pub_other")
    assert r.status_code == 404
    assert r.json()["error"]["type"] == "NOT_FOUND_ERROR"


def test_create_transaction_is_pending(api, auth):
    r = api.post("/v1/transactions", json=signed_body(), headers=auth)
    assert r.status_code == 201
    data = r.json()["data"]
    assert data["status"] == "PENDING"
    assert data["id"].startswith("sbx-")
    assert "token" not in data["payment_method"]

    r2 = api.get(f"/v1/transactions/{data['id']}", headers=auth)
    assert r2.json()["data"]["reference"] == "ORDER-1-1000"


def test_create_requires_private_key(api):
    r = api.post("/v1/transactions", json=signed_body(), headers={"Authorization": "Bearer wrong"})
    assert r.status_code == 401
    assert r.json()["error"]["type"] == "AUTHENTICATION_ERROR"


def test_bad_signature_is_rejected(api, auth):
    body = signed_body()
    body["amount_in_cents"] += 1
    r = api.post("/v1/transactions", json=body, headers=auth)
    assert r.status_code == 422
    assert r.json()["error"]["reason"] == "Invalid integrity signature"


def test_bad_acceptance_token_is_rejected(api, auth):
    r = api.post("/v1/transactions", json=signed_body(acceptance_token="nope"), headers=auth)
    assert r.status_code == 422
    assert r.json()["error"]["reason"] == "Invalid acceptance token"


def test_reference_in_use_is_rejected(api, auth):
    tx_id = api.post("/v1/transactions", json=signed_body(), headers=auth).json()["data"]["id"]
    r = api.post("/v1/transactions", json=signed_body(), headers=auth)
    assert r.status_code == 422
    assert r.json()["error"]["reason"] == "Reference already used"

    api.post(f"/v1/transactions/{tx_id}/settle", json={"status": "APPROVED"}, headers=auth)
    r = api.post("/v1/transactions", json=signed_body(), headers=auth)
    assert r.status_code == 422


def test_reference_can_be_charged_again_after_decline(api, auth):
    first = api.post("/v1/transactions", json=signed_body(), headers=auth).json()["data"]["id"]
    api.post(f"/v1/transactions/{first}/settle", json={"status": "DECLINED"}, headers=auth)

    r = api.post("/v1/transactions", json=signed_body(), headers=auth)
    assert r.status_code == 201
    second = r.json()["data"]
    assert second["id"] != first
    assert second["status"] == "PENDING"


def test_malformed_body_uses_gateway_error_envelope(api, auth):
    r = api.post("/v1/transactions", json={"reference": "x"}, headers=auth)
    assert r.status_code == 422
    assert r.json()["error"]["type"] == "INPUT_VALIDATION_ERROR"
    assert r.json()["error"]["messages"]


def test_settle_is_final(api, auth):
    tx_id = api.post("/v1/transactions", json=signed_body(), headers=auth).json()["data"]["id"]

    r = api.post(f"/v1/transactions/{tx_id}/settle", json={"status": "APPROVED"}, headers=auth)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "APPROVED"
    assert r.json()["webhook_delivered"] is None

    again = api.post(f"/v1/transactions/{tx_id}/settle", json={"status": "DECLINED"}, headers=auth)
    assert again.status_code == 409
    assert api.get(f"/v1/transactions/{tx_id}", headers=auth).json()["data"]["status"] == "APPROVED"


def test_settle_unknown_is_404(api, auth):
    r = api.post("/v1/transactions/sbx-missing/settle", json={"status": "APPROVED"}, headers=auth)
    assert r.status_code == 404


def test_settle_delivers_signed_webhook(api, auth, monkeypatch):
    monkeypatch.setattr(main, "WEBHOOK_URL", "http://merchant.test/api/checkout/webhook/")
    sent = {}

    def fake_post(url, body, headers):
        sent.update(url=url, content=body, headers=headers)
        return httpx.Response(200, json={"success": True})

    monkeypatch.setattr(main, "_post_event", fake_post)
    tx_id = api.post("/v1/transactions", json=signed_body(), headers=auth).json()["data"]["id"]
    r = api.post(f"/v1/transactions/{tx_id}/settle", json={"status": "DECLINED"}, headers=auth)

    assert r.json()["webhook_delivered"] is True
    event = json.loads(sent["content"])
    assert event["event"] == "transaction.updated"
    assert event["data"]["transaction"]["status"] == "DECLINED"
    ts = sent["headers"]["X-Timestamp"]
    expected = hashlib.sha256(sent["content"] + ts.encode() + main.EVENTS_SECRET.encode()).hexdigest()
    assert sent["headers"]["X-Signature"] == expected


def test_webhook_delivery_failure_is_reported(api, auth, monkeypatch):
    monkeypatch.setattr(main, "WEBHOOK_URL", "http://merchant.test/api/checkout/webhook/")

    def fake_post(url, body, headers):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(main, "_post_event", fake_post)
    tx_id = api.post("/v1/transactions", json=signed_body(), headers=auth).json()["data"]["id"]
    r = api.post(f"/v1/transactions/{tx_id}/settle", json={"status": "APPROVED"}, headers=auth)

    assert r.status_code == 200
    assert r.json()["webhook_delivered"] is False
