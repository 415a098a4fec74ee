"""In-process stub adapters for the orders domain ports.

These stubs implement ``PriceQuotePort``, ``StockReservationPort`` and
``OrderRepositoryPort`` without any network or database access. They are
intended for unit tests and local development where deterministic behavior
is useful and the catalog and inventory services are not running.
"""

import itertools
import threading
from contextlib import ExitStack, contextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .domain import Order, OrderStatus
from .errors import InsufficientStock, PriceNotFound

DEFAULT_PRICES = {
    101: Decimal("399.0"),
    102: Decimal("249.5"),
    103: Decimal("799.0"),
}
DEFAULT_STOCK = {101: 10, 102: 10, 103: 10}


class CatalogStub:
    """Stub ``PriceQuotePort`` backed by a fixed price table."""

    def __init__(self, prices: Mapping[int, Decimal] | None = None):
        self.prices = dict(DEFAULT_PRICES if prices is None else prices)
        self.calls: List[List[int]] = []

    def get_prices(self, book_ids: List[int]) -> Dict[int, Decimal]:
        """Return prices for the requested ids.

        Raises:
            PriceNotFound: If any id is not in the price table.
        """
        self.calls.append(list(book_ids))
        missing = [b for b in book_ids if b not in self.prices]
        if missing:
            raise PriceNotFound(missing)
        return {b: self.prices[b] for b in book_ids}


class InventoryStub:
    """Stub ``StockReservationPort`` holding per-book stock in memory.

    A single lock guards the stock table so that a bulk reduction validates
    and decrements every item as one step: either all items are reduced or
    none is.
    """

    def __init__(self, stock: Mapping[int, int] | None = None):
        self.stock = dict(DEFAULT_STOCK if stock is None else stock)
        self._lock = threading.Lock()
        self.reductions: List[Dict[int, int]] = []

    def check_bulk_availability(self, quantities: Mapping[int, int]) -> Dict[int, bool]:
        with self._lock:
            return {b: self.stock.get(b, 0) >= q for b, q in quantities.items()}

    def reduce_bulk_inventory(self, quantities: Mapping[int, int]) -> None:
        """Reduce every item or raise without touching any.

        Raises:
            InsufficientStock: Naming every book with too little stock.
        """
        with self._lock:
            short = [b for b, q in quantities.items() if self.stock.get(b, 0) < q]
            if short:
                raise InsufficientStock(short)
            for b, q in quantities.items():
                self.stock[b] -= q
            self.reductions.append(dict(quantities))


class InMemoryOrderRepository:
    """Stub ``OrderRepositoryPort`` keeping orders in a dict.

    Identities come from a counter. Mutations are serialized per order id
    with one lock per key, mirroring the row lock of the database
    repository. Stored orders are copied in and out so callers never hold
    a live reference to the stored aggregate.
    """

    def __init__(self):
        self._orders: Dict[int, Order] = {}
        self._ids = itertools.count(1)
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}

    @staticmethod
    def _copy(order: Order) -> Order:
        return replace(order, line_items=dict(order.line_items))

    def _lock_for(self, order_id: int) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(order_id, threading.Lock())

    def _active(self) -> List[Order]:
        with self._guard:
            orders = [o for o in self._orders.values() if not o.is_deleted]
        return [self._copy(o) for o in sorted(orders, key=lambda o: o.order_id)]

    def add(self, order: Order) -> Order:
        with self._guard:
            saved = replace(self._copy(order), order_id=next(self._ids))
            self._orders[saved.order_id] = saved
        return self._copy(saved)

    def get(self, order_id: int) -> Optional[Order]:
        with self._guard:
            order = self._orders.get(order_id)
        if order is None or order.is_deleted:
            return None
        return self._copy(order)

    def list_all(self) -> List[Order]:
        return self._active()

    def list_by_status(self, status: OrderStatus) -> List[Order]:
        return [o for o in self._active() if o.status == status]

    def list_by_user(self, user_id: int) -> List[Order]:
        return [o for o in self._active() if o.user_id == user_id]

    @contextmanager
    def locked(self, order_id: int, include_deleted: bool = False) -> Iterator[Optional[Order]]:
        with self._lock_for(order_id):
            with self._guard:
                stored = self._orders.get(order_id)
            if stored is None or (stored.is_deleted and not include_deleted):
                yield None
                return
            working = self._copy(stored)
            yield working
            with self._guard:
                stored.status = working.status
                stored.is_deleted = working.is_deleted

    def soft_delete_by_user(self, user_id: int) -> Tuple[int, int]:
        with self._guard:
            ids = sorted(oid for oid, o in self._orders.items() if o.user_id == user_id)
        updated = skipped = 0
        # same per-order locks as locked(), taken in id order
        with ExitStack() as stack:
            for oid in ids:
                stack.enter_context(self._lock_for(oid))
            with self._guard:
                for oid in ids:
                    order = self._orders[oid]
                    if order.is_deleted:
                        skipped += 1
                    else:
                        order.is_deleted = True
                        updated += 1
        return updated, skipped
