"""End-to-end API tests through the Django test client (stub gateway)."""
import json

import pytest

from apps.checkout.models import OrderModel, TransactionModel

pytestmark = pytest.mark.django_db

ORDERS_URL = "/api/checkout/orders/"


def post_json(client, url, payload, **headers):
    return client.post(url, data=json.dumps(payload), content_type="application/json", **headers)


def test_quote(client, products):
    r = post_json(client, "/api/checkout/quote/", {"items": [{"product_id": products["mug"].id, "quantity": 1}]})
    assert r.status_code == 200
    assert r.json() == {
        "subtotal_cents": 2_500_000,
        "shipping_cents": 1_000_000,
        "tax_cents": 475_000,
        "total_cents": 3_975_000,
    }


def test_create_order_without_payment(client, order_payload, gateway):
    r = post_json(client, ORDERS_URL, order_payload)

    assert r.status_code == 201
    body = r.json()
    assert body["order"]["status"] == "pending"
    assert body["order"]["amount_in_cents"] == 5_950_000
    assert "transaction" not in body
    assert r.headers["X-Request-ID"]


def test_one_step_checkout_approved(client, order_payload, gateway):
    payload = {**order_payload, "payment_method": {"type": "card", "token": "tok_test_ok"}}
    r = post_json(client, ORDERS_URL, payload)

    assert r.status_code == 201
    body = r.json()
    assert body["order"]["status"] == "approved"
    assert body["transaction"]["status"] == "APPROVED"
    assert body["transaction"]["id"].startswith("stub-")


def test_missing_fields_400(client, products, gateway):
    r = post_json(client, ORDERS_URL, {"items": [{"product_id": products["mug"].id, "quantity": 1}]})
    assert r.status_code == 400
    body = r.json()
    assert body["detail"] == "VALIDATION_ERROR"
    assert "customer_email" in body["details"]["missing"]
    assert "shipping_address" in body["details"]["missing"]


def test_malformed_body_400(client, gateway):
    r = post_json(client, ORDERS_URL, {"items": [{"product_id": "x", "quantity": -1}]})
    assert r.status_code == 400
    assert r.json()["detail"] == "VALIDATION_ERROR"


def test_amount_mismatch_400(client, order_payload, gateway):
    r = post_json(client, ORDERS_URL, {**order_payload, "amount_in_cents": 100})
    assert r.status_code == 400
    assert r.json()["details"]["calculated"] == 5_950_000
    assert OrderModel.objects.count() == 0


def test_gateway_rejection_402_then_retry_through_payments(client, order_payload, gateway):
    payload = {**order_payload, "payment_method": {"type": "CARD", "token": "tok_gateway_error"}}
    r = post_json(client, ORDERS_URL, payload)

    assert r.status_code == 402
    reference = r.json()["details"]["reference"]
    assert OrderModel.objects.get(reference=reference).status == "error"

    r2 = post_json(
        client, "/api/checkout/payments/", {"reference": reference, "payment_method": {"type": "CARD", "token": "tok_ok"}}
    )
    assert r2.status_code == 200
    assert r2.json()["order"]["status"] == "approved"
    assert TransactionModel.objects.filter(reference=reference).count() == 2


def test_payments_unknown_reference_404(client, gateway):
    r = post_json(
        client, "/api/checkout/payments/", {"reference": "ORDER-0-0000", "payment_method": {"type": "CARD", "token": "t"}}
    )
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


def test_order_detail(client, order_payload, gateway):
    payload = {**order_payload, "payment_method": {"type": "CARD", "token": "tok_test_ok"}}
    reference = post_json(client, ORDERS_URL, payload).json()["order"]["reference"]

    r = client.get(f"{ORDERS_URL}{reference}/")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "approved"
    assert body["customer"]["email"] == "ana@example.com"
    assert body["transaction"]["status"] == "APPROVED"
    assert body["delivery"]["status"] == "assigned"
    assert body["delivery"]["estimated_delivery_date"]


def test_order_detail_404(client):
    r = client.get(f"{ORDERS_URL}ORDER-0-0000/")
    assert r.status_code == 404


def test_transaction_status_polling(client, order_payload, gateway):
    payload = {**order_payload, "payment_method": {"type": "NEQUI", "phone_number": "3001234567"}}
    external_id = post_json(client, ORDERS_URL, payload).json()["transaction"]["id"]

    r = client.get(f"/api/checkout/transactions/{external_id}/status/", {"max_attempts": 2, "delay": 0})
    assert r.status_code == 200
    assert r.json()["status"] == "PENDING"
    assert r.json()["attempts"] == 2

    gateway.settle(external_id, "DECLINED")
    r = client.get(f"/api/checkout/transactions/{external_id}/status/", {"delay": 0})
    assert r.json()["status"] == "DECLINED"
    assert r.json()["final"] is True
    assert OrderModel.objects.get().status == "declined"


def test_transaction_status_attempts_are_capped(client, order_payload, gateway, settings):
    settings.CHECKOUT_POLL_MAX_ATTEMPTS_CAP = 2
    payload = {**order_payload, "payment_method": {"type": "NEQUI", "phone_number": "3001234567"}}
    external_id = post_json(client, ORDERS_URL, payload).json()["transaction"]["id"]

    r = client.get(f"/api/checkout/transactions/{external_id}/status/", {"max_attempts": 50, "delay": 0})
    assert r.json()["attempts"] == 2


def test_transaction_status_unknown_404(client, gateway):
    r = client.get("/api/checkout/transactions/nope/status/", {"delay": 0})
    assert r.status_code == 404


def test_acceptance_token(client, gateway):
    r = client.get("/api/checkout/acceptance-token/")
    assert r.status_code == 200
    assert r.json()["data"]["acceptance_token"] == "stub-acceptance-token"


def test_acceptance_token_unavailable(client, gateway):
    gateway.acceptance_token = None
    r = client.get("/api/checkout/acceptance-token/")
    assert r.status_code == 500
    assert r.json()["detail"] == "SERVER_ERROR"


def test_webhook_endpoint(client, order_payload, gateway, products):
    payload = {**order_payload, "payment_method": {"type": "NEQUI", "phone_number": "3001234567"}}
    external_id = post_json(client, ORDERS_URL, payload).json()["transaction"]["id"]

    raw = json.dumps(
        {"event": "transaction.updated", "data": {"transaction": {"id": external_id, "status": "APPROVED"}}}
    ).encode()
    bad = client.post(
        "/api/checkout/webhook/", data=raw, content_type="application/json",
        HTTP_X_SIGNATURE="f" * 64, HTTP_X_TIMESTAMP="1700000000",
    )
    assert bad.status_code == 401

    ok = client.post(
        "/api/checkout/webhook/", data=raw, content_type="application/json",
        HTTP_X_SIGNATURE=gateway.sign_webhook(raw, "1700000000"), HTTP_X_TIMESTAMP="1700000000",
    )
    assert ok.status_code == 200
    assert ok.json()["applied"] is True
    assert OrderModel.objects.get().status == "approved"


def test_health(client):
    r = client.get("/api/health/")
    assert r.status_code == 200
    assert r.json()["components"]["payment_gateway"]["state"] == "CLOSED"


def test_oversized_body_413(client, settings, monkeypatch):
    from core import middleware

    monkeypatch.setattr(middleware, "MAX_API_BYTES", 10)
    r = post_json(client, "/api/checkout/quote/", {"items": [{"product_id": 1, "quantity": 1}]})
    assert r.status_code == 413
