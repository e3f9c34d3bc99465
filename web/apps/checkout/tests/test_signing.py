import hashlib

from apps.checkout.signing import integrity_signature, verify_webhook_signature, webhook_signature


def test_integrity_signature_concatenates_fields_and_secret():
    expected = hashlib.sha256(b"ORDER-1-1234" + b"5950000" + b"COP" + b"secret").hexdigest()
    assert integrity_signature("ORDER-1-1234", 5_950_000, "COP", "secret") == expected


def test_integrity_signature_changes_with_amount():
    a = integrity_signature("ORDER-1-1234", 100, "COP", "secret")
    b = integrity_signature("ORDER-1-1234", 101, "COP", "secret")
    assert a != b


def test_webhook_signature_roundtrip():
    body = b'{"event":"transaction.updated"}'
    sig = webhook_signature(body, "1700000000", "events")
    assert verify_webhook_signature(body, sig, "1700000000", "events")
    assert verify_webhook_signature(body, sig.upper(), "1700000000", "events")


def test_single_byte_mutation_is_rejected():
    body = b'{"event":"transaction.updated","status":"APPROVED"}'
    sig = webhook_signature(body, "1700000000", "events")
    tampered = body.replace(b"APPROVED", b"APPROVEE")
    assert not verify_webhook_signature(tampered, sig, "1700000000", "events")
    assert not verify_webhook_signature(body, sig, "1700000001", "events")


def test_missing_or_malformed_signature_is_rejected():
    body = b"{}"
    assert not verify_webhook_signature(body, None, "1", "events")
    assert not verify_webhook_signature(body, "abc", "1", "events")
    assert not verify_webhook_signature(body, "z" * 64, "1", "events")
    assert not verify_webhook_signature(body, webhook_signature(body, "1", "events"), None, "events")


def test_every_single_byte_mutation_of_signature_is_rejected():
    body = b'{"id":"tx-1"}'
    sig = webhook_signature(body, "1700000000", "events")
    for i in range(len(sig)):
        flipped = "0" if sig[i] != "0" else "1"
        mutated = sig[:i] + flipped + sig[i + 1:]
        assert not verify_webhook_signature(body, mutated, "1700000000", "events")
