"""Request-scoped middleware for the order service.

This module provides three small Django middlewares:

- ``RequestIdMiddleware`` ensures every request carries a request
  identifier. It reuses the incoming ``X-Request-Id`` header or generates a
  UUIDv4, stores it on the request and in a ContextVar so downstream code
  (log filters, HTTP adapters) can read it, and echoes it back in the
  ``X-Request-ID`` response header.
- ``GatewaySecretMiddleware`` rejects requests that did not come through
  the API gateway. When ``settings.GATEWAY_SECRET`` is set, every request
  outside ``settings.GATEWAY_PUBLIC_PATHS`` must carry that secret in the
  ``settings.GATEWAY_SECRET_HEADER`` header. With no secret configured the
  check is disabled.
- ``ApiSizeLimitMiddleware`` rejects oversized API bodies with 413.
"""

import contextvars
import hmac
import logging
import uuid
from datetime import datetime, timezone

from django.conf import settings
from django.http import JsonResponse
from django.utils.deprecation import MiddlewareMixin

REQUEST_ID_CTX = contextvars.ContextVar("request_id", default="-")

logger = logging.getLogger("gateway")


class RequestIdMiddleware(MiddlewareMixin):
    """Django middleware that sets and returns a per-request identifier.

    Attributes:
        HEADER (str): The name of the incoming HTTP header (in Django's
            ``request.META`` casing) that may contain a client-provided id.
        RESPONSE_HEADER (str): The name of the header returned on responses.
    """

    HEADER = "HTTP_X_REQUEST_ID"       # incoming header as found in request.META
    RESPONSE_HEADER = "X-Request-ID"   # header to add to outgoing responses

    def process_request(self, request):
        """Populate the request with a request id and set a context var.

        Args:
            request: Django HttpRequest instance.
        """
        rid = request.META.get(self.HEADER)
        if not rid:
            rid = str(uuid.uuid4())
        request.request_id = rid
        REQUEST_ID_CTX.set(rid)

    def process_response(self, request, response):
        """Ensure the response contains the request id header and return it.

        Args:
            request: Django HttpRequest (may be None in rare cases).
            response: Django HttpResponse to modify.

        Returns:
            The same HttpResponse instance with the ``X-Request-ID`` header set.
        """
        rid = getattr(request, "request_id", REQUEST_ID_CTX.get())
        response[self.RESPONSE_HEADER] = rid
        return response


class GatewaySecretMiddleware(MiddlewareMixin):
    """Block direct access to the service, bypassing the API gateway."""

    def process_request(self, request):
        expected = getattr(settings, "GATEWAY_SECRET", "")
        if not expected:
            return None
        if any(request.path.startswith(p) for p in getattr(settings, "GATEWAY_PUBLIC_PATHS", [])):
            return None

        header = getattr(settings, "GATEWAY_SECRET_HEADER", "X-Gateway-Secret")
        supplied = request.headers.get(header)
        if not supplied:
            logger.warning("Direct access blocked", extra={"path": request.path, "remote_addr": request.META.get("REMOTE_ADDR")})
            return self._forbidden(request, "Direct access not allowed. Please use the API Gateway.")
        if not hmac.compare_digest(supplied.encode(), expected.encode()):
            logger.warning("Invalid gateway secret", extra={"path": request.path})
            return self._forbidden(request, "Invalid gateway credentials.")
        return None

    @staticmethod
    def _forbidden(request, message: str) -> JsonResponse:
        return JsonResponse(
            {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "status": 403,
                "error": "FORBIDDEN",
                "message": message,
                "path": request.path,
            },
            status=403,
        )


class ApiSizeLimitMiddleware(MiddlewareMixin):
    def process_request(self, request):
        if request.path.startswith(("/api/", "/order/")):
            clen = request.META.get("CONTENT_LENGTH")
            limit = getattr(settings, "API_MAX_BYTES", 1024 * 1024)
            if clen and clen.isdigit() and int(clen) > limit:
                return JsonResponse({"detail": "PAYLOAD_TOO_LARGE"}, status=413)
