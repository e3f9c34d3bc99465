"""Idempotency utilities for create-order requests.

A client that retries ``POST /api/checkout/orders/`` with the same
``Idempotency-Key`` gets the stored response instead of a second order (and
a second charge). Reusing a key with a different payload is a conflict.
"""

import hashlib
import json

from django.db import IntegrityError, transaction

from .models import IdempotencyKey

IN_PROGRESS = 0


def _hash(payload: dict) -> str:
    """Stable SHA-256 of a JSON-serializable payload (sorted keys, compact)."""
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict):
    """Get-or-create the idempotency record for ``key``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``. ``existing`` is False
        when this call created the record; the caller then processes the
        request and calls ``finalize``.

    Raises:
        ValueError: ``IDEMPOTENCY_CONFLICT`` when the key was used with a
            different payload.
    """
    h = _hash(payload)

    try:
        # Savepoint so an IntegrityError only rolls back the insert.
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(
                key=key, request_hash=h, response_status=IN_PROGRESS, response_body={}
            )
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        return True, rec


def is_in_progress(rec: IdempotencyKey) -> bool:
    return rec.response_status == IN_PROGRESS


def finalize(rec: IdempotencyKey, status_code: int, body: dict, order_reference: str | None = None):
    """Store the final response so retries can replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if order_reference is not None:
        rec.order_reference = order_reference
    rec.save(update_fields=["response_status", "response_body", "order_reference"])


def release(rec: IdempotencyKey):
    """Forget a key whose request failed on our side, so the client may retry it."""
    IdempotencyKey.objects.filter(pk=rec.pk).delete()
