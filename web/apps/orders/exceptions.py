"""DRF exception handler translating order errors into HTTP responses.

Configured as ``REST_FRAMEWORK["EXCEPTION_HANDLER"]``. Every error body has
the same shape::

    {"timestamp": ..., "status": 409, "error": "INSUFFICIENT_STOCK",
     "message": "...", "path": "/api/v1/order/place"}
"""

import logging
from datetime import datetime, timezone

from rest_framework.response import Response
from rest_framework.views import exception_handler

from .errors import OrderError

logger = logging.getLogger("orders.api")


def error_body(status_code: int, code: str, message: str, path: str) -> dict:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status_code,
        "error": code,
        "message": message,
        "path": path,
    }


def order_exception_handler(exc, context):
    """Map ``OrderError`` to its status and code; reshape DRF errors.

    Args:
        exc: The raised exception.
        context: DRF handler context holding the request.

    Returns:
        Response | None: None lets Django handle unexpected exceptions.
    """
    request = context.get("request")
    path = request.path if request is not None else ""

    if isinstance(exc, OrderError):
        log = logger.error if exc.status_code >= 500 else logger.warning
        log("%s: %s | Path: %s", exc.code, exc.message, path)
        return Response(error_body(exc.status_code, exc.code, exc.message, path), status=exc.status_code)

    response = exception_handler(exc, context)
    if response is None:
        return None
    code = str(getattr(exc, "default_code", "error")).upper()
    data = response.data
    message = data.get("detail", str(data)) if isinstance(data, dict) else str(data)
    response.data = error_body(response.status_code, code, str(message), path)
    return response
