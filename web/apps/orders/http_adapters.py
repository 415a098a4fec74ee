"""HTTP adapter clients with retries, circuit breakers, and context headers.

This module implements the catalog and inventory ports over ``httpx``. It
adds:

- Request correlation: propagates ``X-Request-ID`` from a ContextVar set by
  the gateway middleware, and the gateway secret header so downstream
  services accept the call.
- Circuit breaker per downstream service (catalog, inventory) to avoid
  hammering unhealthy dependencies, with HALF_OPEN probing after a timeout.
- Retry policy with exponential backoff for transport errors and 5xx. The
  stock reduction is not idempotent, so it is only retried when the
  connection was never established.
- Error decoding at the boundary: downstream HTTP statuses and bodies are
  translated into the order error taxonomy here and nowhere else.
"""

import logging
import threading
import time
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Mapping, Optional, Tuple

import httpx
from django.conf import settings

from gateway.middleware import REQUEST_ID_CTX

from .errors import (
    CatalogUnavailable,
    InsufficientStock,
    InventoryUnavailable,
    PriceNotFound,
    ValidationError,
)

logger = logging.getLogger("orders.http")

GENERIC_DOWNSTREAM_MESSAGE = "Service communication failure"


# ---------------- Circuit Breaker ---------------- #

class CircuitOpen(RuntimeError):
    """Raised when a call is refused by an OPEN (or busy HALF_OPEN) breaker."""


class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            CircuitOpen: If the circuit is OPEN or a HALF_OPEN probe is busy.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise CircuitOpen(f"CIRCUIT_OPEN:{self.name}")
            if st == "HALF_OPEN":
                # allow only one concurrent probe
                if self._half_open_probe_in_flight:
                    raise CircuitOpen(f"CIRCUIT_HALF_OPEN_BUSY:{self.name}")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        """Record a successful call and close/reset the breaker."""
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        """Record a failed call and open the breaker if threshold exceeded."""
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (
                self._failures >= self.fail_threshold and self._state != "OPEN"
            ):
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        """Release any HALF_OPEN probe flag after a call finishes."""
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


# Per-service instances
_catalog_cb = CircuitBreaker(
    "catalog",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)
_inventory_cb = CircuitBreaker(
    "inventory",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


def circuit_states() -> Dict[str, str]:
    """Return the current state of every downstream circuit breaker."""
    return {cb.name: cb.state for cb in (_catalog_cb, _inventory_cb)}


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID, gateway secret and extras.

    Args:
        extra: Optional dict of additional headers to include.

    Returns:
        dict: Final headers dictionary for the outgoing request.
    """
    headers: dict[str, str] = {}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    secret = getattr(settings, "GATEWAY_SECRET", "")
    if secret:
        headers[getattr(settings, "GATEWAY_SECRET_HEADER", "X-Gateway-Secret")] = secret
    if extra:
        headers.update(extra)
    return headers


def _retry_policy():
    """Return retry configuration as (max_retries, backoff_base_seconds)."""
    return (
        getattr(settings, "HTTP_RETRY_MAX", 3),
        getattr(settings, "HTTP_RETRY_BACKOFF_BASE", 0.15),
    )


def _should_retry(resp: Optional[httpx.Response], exc: Optional[Exception], idempotent: bool) -> bool:
    """Decide whether to retry based on response status or transport error.

    Idempotent calls retry on any transport error or HTTP 5xx. Other calls
    retry only when the connection could not be established, since the
    server may already have applied the request otherwise.
    """
    if exc is not None:
        if idempotent:
            return True
        return isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout))
    if idempotent and resp is not None and 500 <= resp.status_code < 600:
        return True
    return False


def decode_error(resp) -> Tuple[int, str]:
    """Extract (status, message) from a downstream error response.

    Downstream services answer errors with a JSON body carrying a
    ``message`` field; any other shape degrades to a generic message.
    """
    message = GENERIC_DOWNSTREAM_MESSAGE
    try:
        body = resp.json()
        if isinstance(body, dict) and body.get("message"):
            message = str(body["message"])
    except Exception:
        logger.warning("Could not parse error body from downstream service", extra={"status": resp.status_code})
    logger.error("Downstream error [status %s]: %s", resp.status_code, message)
    return resp.status_code, message


def _book_ids_from(resp, key: str) -> List[int]:
    """Read the list of book ids a downstream error body names under ``key``."""
    try:
        body = resp.json()
        return [int(b) for b in body.get(key) or []]
    except (ValueError, TypeError, AttributeError):
        return []


class _HttpClientBase:
    """Shared request loop: circuit-breaker precheck, retries and backoff."""

    breaker: CircuitBreaker

    def __init__(self, base_url: str, timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECS

    def _send(self, method: str, path: str, payload: dict, idempotent: bool = True) -> httpx.Response:
        """Send a request and return the final response.

        Business responses (2xx, 4xx) are returned to the caller for
        decoding; 5xx responses are returned once retries are exhausted.

        Raises:
            CircuitOpen: If the breaker refuses the call.
            httpx.RequestError: For transport errors after retries.
        """
        max_retries, backoff = _retry_policy()
        tries = 0

        # CIRCUIT: precheck
        state = self.breaker.before_call()
        headers = _request_headers({"X-Circuit-State": state, "X-Retry-Count": "0"})
        url = f"{self.base_url}{path}"

        try:
            with httpx.Client(timeout=self.timeout) as client:
                while True:
                    resp = None
                    exc = None
                    try:
                        resp = client.request(method, url, json=payload, headers=headers)
                        if resp.status_code < 500:
                            # 4xx are business outcomes, not circuit failures
                            self.breaker.on_success()
                            return resp
                    except httpx.RequestError as e:
                        exc = e

                    tries += 1
                    headers["X-Retry-Count"] = str(tries)

                    if tries > max_retries or not _should_retry(resp, exc, idempotent):
                        self.breaker.on_failure()
                        if exc:
                            raise exc
                        return resp

                    sleep_s = backoff * (2 ** (tries - 1))  # exponential backoff
                    cap = getattr(settings, "HTTP_RETRY_MAX_SLEEP", 0.5)
                    time.sleep(min(sleep_s, cap))
        finally:
            self.breaker.on_finish()


# ---------------- Catalog Adapter ---------------- #

class HttpPriceQuoteClient(_HttpClientBase):
    """HTTP client for the catalog price lookup (``PriceQuotePort``)."""

    breaker = _catalog_cb

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        super().__init__(base_url or settings.CATALOG_BASE_URL, timeout)

    def get_prices(self, book_ids: List[int]) -> Dict[int, Decimal]:
        """Fetch unit prices for every requested book.

        Maps downstream responses:
        - 200 → ``bookPrice`` map; ids missing from it raise PriceNotFound
        - 400 → ValidationError
        - 404 → PriceNotFound
        - anything else, transport errors and an open circuit →
          CatalogUnavailable

        Args:
            book_ids: Book ids to price.

        Returns:
            dict: Book id to unit price.
        """
        try:
            resp = self._send("POST", "/api/v1/book/bulk/prices", {"bookIds": list(book_ids)})
        except CircuitOpen as e:
            raise CatalogUnavailable(f"Catalog service unavailable: {e}") from e
        except httpx.RequestError as e:
            logger.error("Catalog call failed: %s", e)
            raise CatalogUnavailable(f"Catalog service unavailable: {e}") from e

        if resp.status_code == 200:
            try:
                raw = resp.json().get("bookPrice") or {}
                prices = {int(k): Decimal(str(v)) for k, v in raw.items()}
            except (ValueError, TypeError, AttributeError, InvalidOperation) as e:
                raise CatalogUnavailable("Malformed price response from catalog service") from e
            missing = [b for b in book_ids if b not in prices]
            if missing:
                raise PriceNotFound(missing)
            return {b: prices[b] for b in book_ids}

        status, message = decode_error(resp)
        if status == 400:
            raise ValidationError(f"Catalog Issue: {message}")
        if status == 404:
            missing = _book_ids_from(resp, "missingBookIds") or book_ids
            raise PriceNotFound(missing, message=f"Catalog Issue: {message}")
        raise CatalogUnavailable(f"Catalog service failed: {message}")


# ---------------- Inventory Adapter ---------------- #

class HttpStockReservationClient(_HttpClientBase):
    """HTTP client for the inventory reservation contract."""

    breaker = _inventory_cb

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        super().__init__(base_url or settings.INVENTORY_BASE_URL, timeout)

    @staticmethod
    def _payload(quantities: Mapping[int, int]) -> dict:
        return {"bookQuantities": {str(b): q for b, q in quantities.items()}}

    def check_bulk_availability(self, quantities: Mapping[int, int]) -> Dict[int, bool]:
        """Ask the inventory whether each quantity is available.

        Returns the ``availabilityMap`` as sent; completeness is verified by
        the caller.

        Raises:
            InventoryUnavailable: On transport errors, open circuit,
                malformed bodies or non-2xx responses.
        """
        try:
            resp = self._send("POST", "/api/v1/inventory/bulk/check-availability", self._payload(quantities))
        except CircuitOpen as e:
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e
        except httpx.RequestError as e:
            logger.error("Inventory availability call failed: %s", e)
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e

        if resp.status_code == 200:
            try:
                raw = resp.json().get("availabilityMap") or {}
                return {int(k): bool(v) for k, v in raw.items()}
            except (ValueError, TypeError, AttributeError) as e:
                raise InventoryUnavailable("Malformed availability response from inventory service") from e

        _, message = decode_error(resp)
        raise InventoryUnavailable(f"Inventory Issue: {message}")

    def reduce_bulk_inventory(self, quantities: Mapping[int, int]) -> None:
        """Reduce stock for all items, all-or-nothing on the inventory side.

        Maps downstream responses:
        - 2xx → success
        - 400, 404, 409, 422 → InsufficientStock (ids from
          ``unavailableBookIds`` when present)
        - anything else, transport errors and an open circuit →
          InventoryUnavailable
        """
        try:
            resp = self._send(
                "PATCH", "/api/v1/inventory/bulk/reduce", self._payload(quantities), idempotent=False
            )
        except CircuitOpen as e:
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e
        except httpx.RequestError as e:
            logger.error("Inventory reduction call failed: %s", e)
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e

        if 200 <= resp.status_code < 300:
            return

        status, message = decode_error(resp)
        if status in (400, 404, 409, 422):
            raise InsufficientStock(_book_ids_from(resp, "unavailableBookIds"), message=f"Inventory Issue: {message}")
        raise InventoryUnavailable(f"Inventory service failed: {message}")
