from django.db import connection
from django.http import JsonResponse

from apps.checkout.http_adapters import gateway_circuit_state


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except Exception:
        db_ok = False

    circuit = gateway_circuit_state()
    # An open circuit degrades payments but the API itself stays up.
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "payment_gateway": {"ok": circuit["state"] != "OPEN", **circuit},
            },
        },
        status=code,
    )
