"""Repository layer for persisting orders.

This module implements ``OrderRepositoryPort`` on top of the Django ORM so
the domain layer is not coupled to ORM details. Every read goes through
``_active()``, which applies the ``is_deleted=False`` predicate; callers
cannot forget it. Mutations go through ``locked()``, which wraps the
change in a transaction holding a row lock on the order.
"""

from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, List, Optional, Tuple

from django.db import transaction

from .domain import Order, OrderStatus
from .models import OrderModel


def to_domain(obj: OrderModel) -> Order:
    """Map an ``OrderModel`` row into a domain ``Order``."""
    return Order(
        order_id=obj.order_id,
        user_id=obj.user_id,
        line_items={int(k): int(v) for k, v in obj.items.items()},
        total_amount=Decimal(obj.total_amount),
        order_date_time=obj.order_date_time,
        status=OrderStatus(obj.status),
        is_deleted=obj.is_deleted,
    )


class DjangoOrderRepository:
    """Repository that persists Order aggregates using Django ORM."""

    def _active(self):
        return OrderModel.objects.filter(is_deleted=False)

    def add(self, order: Order) -> Order:
        """Persist a new order and return it with its assigned id.

        Args:
            order: Domain ``Order`` without an id.

        Returns:
            The stored order as read back from the row.
        """
        obj = OrderModel.objects.create(
            user_id=order.user_id,
            items={str(k): v for k, v in order.line_items.items()},
            total_amount=order.total_amount,
            order_date_time=order.order_date_time,
            status=order.status.value,
            is_deleted=order.is_deleted,
        )
        return to_domain(obj)

    def get(self, order_id: int) -> Optional[Order]:
        obj = self._active().filter(pk=order_id).first()
        return to_domain(obj) if obj else None

    def list_all(self) -> List[Order]:
        return [to_domain(o) for o in self._active().order_by("order_id")]

    def list_by_status(self, status: OrderStatus) -> List[Order]:
        qs = self._active().filter(status=OrderStatus(status).value).order_by("order_id")
        return [to_domain(o) for o in qs]

    def list_by_user(self, user_id: int) -> List[Order]:
        return [to_domain(o) for o in self._active().filter(user_id=user_id).order_by("order_id")]

    @contextmanager
    def locked(self, order_id: int, include_deleted: bool = False) -> Iterator[Optional[Order]]:
        """Yield the order under ``SELECT ... FOR UPDATE``.

        The domain order yielded may be mutated; its ``status`` and
        ``is_deleted`` are written back when the block exits normally. Any
        exception rolls the transaction back and nothing is written.

        Args:
            order_id: Order to lock.
            include_deleted: Also resolve soft-deleted orders.

        Yields:
            The domain ``Order``, or None when no matching row exists.
        """
        with transaction.atomic():
            qs = OrderModel.objects.select_for_update().filter(pk=order_id)
            if not include_deleted:
                qs = qs.filter(is_deleted=False)
            obj = qs.first()
            if obj is None:
                yield None
                return
            order = to_domain(obj)
            yield order
            obj.status = order.status.value
            obj.is_deleted = order.is_deleted
            obj.save(update_fields=["status", "is_deleted"])

    def soft_delete_by_user(self, user_id: int) -> Tuple[int, int]:
        with transaction.atomic():
            rows = list(OrderModel.objects.select_for_update().filter(user_id=user_id))
            skipped = sum(1 for r in rows if r.is_deleted)
            updated = OrderModel.objects.filter(
                pk__in=[r.pk for r in rows if not r.is_deleted]
            ).update(is_deleted=True)
        return updated, skipped
