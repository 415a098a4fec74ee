from django.db import DatabaseError, connection
from django.http import JsonResponse

from apps.orders.http_adapters import circuit_states


def health_view(_request):
    db_ok = False
    try:
        with connection.cursor() as cur:
            cur.execute("SELECT 1;")
        db_ok = True
    except DatabaseError:
        db_ok = False

    # open circuits degrade placement but not reads, so they don't fail the probe
    circuits = circuit_states()
    code = 200 if db_ok else 503
    return JsonResponse(
        {
            "ok": db_ok,
            "components": {
                "db": {"ok": db_ok},
                "catalog": {"circuit": circuits["catalog"]},
                "inventory": {"circuit": circuits["inventory"]},
            },
        },
        status=code,
    )
