"""Error taxonomy for order placement and the order lifecycle.

Every error raised by the orders domain derives from ``OrderError`` and
carries a stable machine-readable ``code`` plus the HTTP ``status_code`` the
REST layer answers with. Views never build error responses by hand; the DRF
exception handler in ``apps.orders.exceptions`` turns these into the error
body.
"""

from typing import Iterable


class OrderError(Exception):
    """Base class for all order domain errors.

    Attributes:
        code: Stable error code exposed to API clients.
        status_code: HTTP status the error maps to.
        message: Human readable description.
    """

    code = "ORDER_ERROR"
    status_code = 500
    default_message = "Order operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OrderError):
    """Malformed request; never reaches a collaborator."""

    code = "VALIDATION_ERROR"
    status_code = 400
    default_message = "Invalid order request"


class PriceNotFound(OrderError):
    """The catalog could not price one or more requested books."""

    code = "PRICE_NOT_FOUND"
    status_code = 404
    default_message = "Price not found for requested books"

    def __init__(self, book_ids: Iterable[int] = (), message: str | None = None):
        self.book_ids = sorted(book_ids)
        if message is None and self.book_ids:
            message = f"Price not found for BookIDs: {self.book_ids}"
        super().__init__(message)


class CatalogUnavailable(OrderError):
    """The catalog collaborator could not be reached or failed transiently."""

    code = "CATALOG_UNAVAILABLE"
    status_code = 503
    default_message = "Catalog service unavailable"


class InsufficientStock(OrderError):
    """Inventory cannot back one or more requested quantities."""

    code = "INSUFFICIENT_STOCK"
    status_code = 409
    default_message = "Insufficient stock"

    def __init__(self, book_ids: Iterable[int] = (), message: str | None = None):
        self.book_ids = sorted(book_ids)
        if message is None and self.book_ids:
            message = f"Insufficient stock for BookIDs: {self.book_ids}"
        super().__init__(message)


class InventoryUnavailable(OrderError):
    """The inventory collaborator could not be reached or answered partially."""

    code = "INVENTORY_UNAVAILABLE"
    status_code = 503
    default_message = "Inventory service unavailable"


class OrderNotPlaced(OrderError):
    """Persisting the order failed after stock was reduced."""

    code = "ORDER_NOT_PLACED"
    status_code = 500
    default_message = "Order could not be placed"


class OrderNotFound(OrderError):
    """The order does not exist or has been soft-deleted."""

    code = "ORDER_NOT_FOUND"
    status_code = 404
    default_message = "Order not found"


class InvalidStatusTransition(OrderError):
    """A status change was attempted on a terminal order."""

    code = "INVALID_ORDER_STATUS_TRANSITION"
    status_code = 422
    default_message = "Invalid order status transition"


class CancellationNotAllowed(OrderError):
    """A cancellation was attempted on a terminal order."""

    code = "ORDER_CANCELLATION_DENIED"
    status_code = 409
    default_message = "Order cannot be cancelled"
