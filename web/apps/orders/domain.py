"""Domain models, ports and the placement orchestrator for book orders.

This module contains the ``Order`` aggregate and its status enumeration,
protocol definitions (ports) for the collaborators an order depends on
(catalog prices, inventory reservation and order persistence), and the
domain service that orchestrates placing an order across them.
"""

import contextvars
import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor, wait
from contextlib import AbstractContextManager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple

from .errors import (
    CatalogUnavailable,
    InsufficientStock,
    InventoryUnavailable,
    OrderError,
    OrderNotPlaced,
    PriceNotFound,
    ValidationError,
)

logger = logging.getLogger("orders.placement")
reconciliation_logger = logging.getLogger("orders.reconciliation")

CENTS = Decimal("0.01")


# ---- Enums ----
class OrderStatus(str, Enum):
    """Enumeration of the possible order statuses.

    DELIVERED and CANCELLED are terminal: no status change leaves them.
    """

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.DELIVERED, OrderStatus.CANCELLED)


# ---- Aggregate ----
@dataclass
class Order:
    """Aggregate root for a customer's book order.

    Attributes:
        order_id: Identity assigned by the repository, or None before saving.
        user_id: Owning customer.
        line_items: Mapping of book id to requested quantity. Fixed at
            creation; repositories never write it back.
        total_amount: Sum of unit price times quantity using the prices
            quoted at placement time.
        order_date_time: Creation timestamp (UTC).
        status: Current ``OrderStatus``. Changed only by the lifecycle
            state machine.
        is_deleted: Soft-delete flag. Deleted orders stay in storage but are
            hidden from every standard query.
    """

    order_id: Optional[int]
    user_id: int
    line_items: Dict[int, int]
    total_amount: Decimal
    order_date_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    status: OrderStatus = OrderStatus.PENDING
    is_deleted: bool = False

    @property
    def book_ids(self) -> List[int]:
        return sorted(self.line_items)


# ---- Ports (DIP) ----
class PriceQuotePort(Protocol):
    """Port resolving book ids to authoritative unit prices."""

    def get_prices(self, book_ids: List[int]) -> Dict[int, Decimal]:
        """Return the unit price of every requested book.

        Raises:
            PriceNotFound: If the catalog omits any requested id.
            CatalogUnavailable: On transport errors, timeouts or 5xx.
        """
        raise NotImplementedError()


class StockReservationPort(Protocol):
    """Port describing the inventory reservation contract.

    ``check_bulk_availability`` is a read-only pre-flight;
    ``reduce_bulk_inventory`` decrements every requested item or none.
    """

    def check_bulk_availability(self, quantities: Mapping[int, int]) -> Dict[int, bool]:
        raise NotImplementedError()

    def reduce_bulk_inventory(self, quantities: Mapping[int, int]) -> None:
        """Atomically reduce stock for all items.

        Raises:
            InsufficientStock: When any item is short; nothing is reduced.
            InventoryUnavailable: On transport errors, timeouts or 5xx.
        """
        raise NotImplementedError()


class OrderRepositoryPort(Protocol):
    """Persistence boundary for the Order aggregate.

    Every read excludes soft-deleted orders. ``locked`` is the only way to
    mutate an order: it yields the order (or None) under a per-order
    transaction and persists ``status`` and ``is_deleted`` when the block
    exits without raising.
    """

    def add(self, order: Order) -> Order:
        raise NotImplementedError()

    def get(self, order_id: int) -> Optional[Order]:
        raise NotImplementedError()

    def list_all(self) -> List[Order]:
        raise NotImplementedError()

    def list_by_status(self, status: OrderStatus) -> List[Order]:
        raise NotImplementedError()

    def list_by_user(self, user_id: int) -> List[Order]:
        raise NotImplementedError()

    def locked(self, order_id: int, include_deleted: bool = False) -> AbstractContextManager:
        raise NotImplementedError()

    def soft_delete_by_user(self, user_id: int) -> Tuple[int, int]:
        """Soft-delete every order of a user; return (updated, skipped)."""
        raise NotImplementedError()


# ---- Helpers ----
def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_placement(user_id, line_items) -> None:
    """Structural validation of a placement request.

    Raises:
        ValidationError: On a non-positive user id, an empty order, or any
            non-positive book id or quantity.
    """
    if not _is_positive_int(user_id):
        raise ValidationError("userId must be a positive integer")
    if not line_items:
        raise ValidationError("Order must contain at least one book")
    bad_ids = [b for b in line_items if not _is_positive_int(b)]
    if bad_ids:
        raise ValidationError(f"Book ids must be positive integers: {bad_ids}")
    bad_qty = sorted(b for b, q in line_items.items() if not _is_positive_int(q))
    if bad_qty:
        raise ValidationError(f"Quantities must be positive integers for BookIDs: {bad_qty}")


def compute_total(line_items: Mapping[int, int], prices: Mapping[int, Decimal]) -> Decimal:
    """Return sum(price * quantity) rounded to cents."""
    total = sum((Decimal(str(prices[b])) * q for b, q in line_items.items()), Decimal("0"))
    return total.quantize(CENTS)


def ensure_complete_prices(book_ids, prices: Mapping[int, Decimal]) -> None:
    missing = [b for b in book_ids if b not in prices]
    if missing:
        raise PriceNotFound(missing)


def ensure_available(quantities: Mapping[int, int], availability: Mapping[int, bool]) -> None:
    """Verify a bulk availability answer.

    An answer missing any requested key is a transient inventory fault;
    any false value is a stock shortage naming every short book.
    """
    missing = [b for b in quantities if b not in availability]
    if missing:
        raise InventoryUnavailable(f"Incomplete availability response, missing BookIDs: {sorted(missing)}")
    short = [b for b in quantities if not availability[b]]
    if short:
        raise InsufficientStock(short)


_default_executor: Optional[ThreadPoolExecutor] = None
_default_executor_lock = threading.Lock()


def _placement_executor() -> ThreadPoolExecutor:
    """Shared pool used when the orchestrator is built without an executor."""
    global _default_executor
    with _default_executor_lock:
        if _default_executor is None:
            _default_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="order-placement")
        return _default_executor


# ---- Domain service ----
class OrderPlacementOrchestrator:
    """Domain service responsible for placing orders.

    Coordinates the catalog and the inventory to turn a customer's line
    items into a persisted PENDING order. The price quote and the
    availability pre-check are independent and run concurrently; stock is
    only reduced once both succeeded, and the reduction is the single stock
    mutating step.

    There is no compensation: if persistence fails after the reduction the
    stock stays reduced, ``OrderNotPlaced`` is raised and a reconciliation
    record is logged on ``orders.reconciliation``.
    """

    def __init__(
        self,
        quotes: PriceQuotePort,
        stock: StockReservationPort,
        orders: OrderRepositoryPort,
        timeout: float | None = None,
        executor: Executor | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """Initialize the orchestrator with its collaborators.

        Args:
            quotes: Port used to fetch unit prices.
            stock: Port used to check and reduce inventory.
            orders: Repository persisting the new order.
            timeout: Seconds to wait for the concurrent price and
                availability calls. None waits indefinitely.
            executor: Executor for the concurrent calls; a shared thread
                pool is used when omitted.
            clock: Callable returning the creation timestamp.
        """
        self.quotes = quotes
        self.stock = stock
        self.orders = orders
        self.timeout = timeout
        self.executor = executor
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def place_order(self, user_id: int, line_items: Mapping[int, int]) -> Order:
        """Place an order: validate, quote, check, reduce stock, persist.

        Args:
            user_id: Positive id of the ordering customer.
            line_items: Mapping of positive book id to positive quantity.

        Returns:
            The persisted Order in PENDING status with its assigned id.

        Raises:
            ValidationError: Structural problems; no collaborator is called.
            PriceNotFound, CatalogUnavailable: No authoritative prices; no
                stock is touched.
            InsufficientStock, InventoryUnavailable: Stock could not be
                reserved; nothing was reduced.
            OrderNotPlaced: Persistence failed after the reduction.
        """
        validate_placement(user_id, line_items)
        quantities = dict(line_items)
        book_ids = sorted(quantities)
        started = time.monotonic()
        logger.info("Initiating order placement", extra={"user_id": user_id, "book_ids": book_ids})

        # 1) Price quote and availability pre-check in parallel
        prices = self._quote_and_check(book_ids, quantities)

        # 2) Reduce stock (all-or-nothing at the inventory boundary)
        try:
            self.stock.reduce_bulk_inventory(quantities)
        except OrderError as e:
            logger.warning("Stock reduction rejected: %s", e.message, extra={"user_id": user_id})
            raise
        except Exception as e:
            logger.error("Stock reduction failed: %s", e, extra={"user_id": user_id})
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e

        # 3) Total and persistence
        order = Order(
            order_id=None,
            user_id=user_id,
            line_items=quantities,
            total_amount=compute_total(quantities, prices),
            order_date_time=self.clock(),
        )
        try:
            saved = self.orders.add(order)
        except Exception as e:
            reconciliation_logger.error(
                "Order not persisted after stock reduction; stock requires manual reconciliation",
                extra={"user_id": user_id, "book_quantities": quantities, "error": str(e)},
            )
            raise OrderNotPlaced(f"Internal system error: Unable to persist order. Cause: {e}") from e

        logger.info(
            "Order placed",
            extra={
                "order_id": saved.order_id,
                "user_id": user_id,
                "total_amount": str(saved.total_amount),
                "duration_ms": int((time.monotonic() - started) * 1000),
            },
        )
        return saved

    def _quote_and_check(self, book_ids: List[int], quantities: Dict[int, int]) -> Dict[int, Decimal]:
        executor = self.executor or _placement_executor()
        # each task runs in its own copy of the caller's context (request id)
        price_f = executor.submit(contextvars.copy_context().run, self.quotes.get_prices, book_ids)
        stock_f = executor.submit(
            contextvars.copy_context().run, self.stock.check_bulk_availability, quantities
        )
        wait([price_f, stock_f], timeout=self.timeout)

        if not price_f.done():
            price_f.cancel()
            stock_f.cancel()
            logger.error("Price quote timed out", extra={"book_ids": book_ids})
            raise CatalogUnavailable("Catalog service timed out")
        try:
            prices = price_f.result()
        except OrderError as e:
            logger.warning("Price quote failed: %s", e.message, extra={"book_ids": book_ids})
            raise
        except Exception as e:
            logger.error("Price quote failed: %s", e, extra={"book_ids": book_ids})
            raise CatalogUnavailable(f"Catalog service unavailable: {e}") from e
        ensure_complete_prices(book_ids, prices)

        if not stock_f.done():
            stock_f.cancel()
            logger.error("Availability check timed out", extra={"book_ids": book_ids})
            raise InventoryUnavailable("Inventory service timed out")
        try:
            availability = stock_f.result()
        except OrderError as e:
            logger.warning("Availability check failed: %s", e.message, extra={"book_ids": book_ids})
            raise
        except Exception as e:
            logger.error("Availability check failed: %s", e, extra={"book_ids": book_ids})
            raise InventoryUnavailable(f"Inventory service unavailable: {e}") from e
        ensure_available(quantities, availability)
        return prices
