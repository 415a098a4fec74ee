"""Order lifecycle state machine and read-side queries.

``OrderLifecycleStateMachine`` is the only component allowed to change an
order's status or soft-delete flag. Each mutation runs inside the
repository's per-order lock so concurrent changes on one order serialize.
``OrderQueryService`` is the read side; it never sees soft-deleted orders
because the repository filters them out of every read.
"""

import logging
from typing import List, Tuple

from .domain import Order, OrderRepositoryPort, OrderStatus
from .errors import CancellationNotAllowed, InvalidStatusTransition, OrderNotFound

logger = logging.getLogger("orders.lifecycle")

NOT_FOUND_MSG = "Order not found with ID: "


class OrderLifecycleStateMachine:
    """Governs status transitions, cancellation and soft deletion.

    Rules:
    - DELIVERED and CANCELLED are terminal and reject every status change,
      including re-applying the same value.
    - Among non-terminal states the target status is applied as given; no
      forward-only ordering is enforced.
    - Cancelling sets CANCELLED and soft-deletes in one operation.
    - Soft delete works in any status and is a no-op when repeated.
    """

    def __init__(self, orders: OrderRepositoryPort):
        self.orders = orders

    def change_status(self, order_id: int, new_status: OrderStatus) -> Order:
        """Overwrite the status of an active, non-terminal order.

        Raises:
            OrderNotFound: If the order is missing or soft-deleted.
            InvalidStatusTransition: If the order is DELIVERED or CANCELLED.
        """
        new_status = OrderStatus(new_status)
        with self.orders.locked(order_id) as order:
            if order is None:
                logger.warning("Order not found for status update", extra={"order_id": order_id})
                raise OrderNotFound(NOT_FOUND_MSG + str(order_id))
            current = order.status
            if current.is_terminal:
                logger.warning(
                    "Status update rejected on terminal order",
                    extra={"order_id": order_id, "from_status": current.value, "to_status": new_status.value},
                )
                raise InvalidStatusTransition(
                    f"Invalid transition: {current.value} -> {new_status.value}. "
                    f"Status cannot be changed for an already {current.value} order."
                )
            order.status = new_status

        logger.info(
            "Order status updated",
            extra={"order_id": order_id, "from_status": current.value, "to_status": new_status.value},
        )
        return order

    def cancel(self, order_id: int) -> Order:
        """Cancel a non-terminal order and soft-delete it.

        Raises:
            OrderNotFound: If the order does not exist.
            CancellationNotAllowed: If the order is DELIVERED or CANCELLED.
        """
        with self.orders.locked(order_id, include_deleted=True) as order:
            if order is None:
                logger.warning("Order not found for cancellation", extra={"order_id": order_id})
                raise OrderNotFound(NOT_FOUND_MSG + str(order_id))
            if order.status.is_terminal:
                logger.warning(
                    "Cancellation rejected",
                    extra={"order_id": order_id, "status": order.status.value},
                )
                raise CancellationNotAllowed(f"Cannot cancel an order that is already {order.status.value}")
            order.status = OrderStatus.CANCELLED
            order.is_deleted = True

        logger.info("Order cancelled", extra={"order_id": order_id})
        return order

    def soft_delete(self, order_id: int) -> None:
        """Mark an order as deleted regardless of its status.

        Raises:
            OrderNotFound: If the order does not exist.
        """
        with self.orders.locked(order_id, include_deleted=True) as order:
            if order is None:
                logger.warning("Order not found for soft delete", extra={"order_id": order_id})
                raise OrderNotFound(NOT_FOUND_MSG + str(order_id))
            if order.is_deleted:
                logger.warning("Soft delete skipped: order already deleted", extra={"order_id": order_id})
                return
            order.is_deleted = True
        logger.info("Order soft-deleted", extra={"order_id": order_id})

    def soft_delete_user_orders(self, user_id: int) -> Tuple[int, int]:
        """Soft-delete every order of a user.

        Returns:
            (updated, skipped) where skipped counts orders already deleted.

        Raises:
            OrderNotFound: If the user has no orders at all.
        """
        updated, skipped = self.orders.soft_delete_by_user(user_id)
        if updated == 0 and skipped == 0:
            logger.warning("No orders found to soft delete", extra={"user_id": user_id})
            raise OrderNotFound(f"No orders found for user ID: {user_id}")
        logger.info(
            "User orders soft-deleted",
            extra={"user_id": user_id, "updated": updated, "skipped": skipped},
        )
        return updated, skipped


class OrderQueryService:
    """Read-only access to active (not soft-deleted) orders."""

    def __init__(self, orders: OrderRepositoryPort):
        self.orders = orders

    def get_by_id(self, order_id: int) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise OrderNotFound(NOT_FOUND_MSG + str(order_id))
        return order

    def get_all(self) -> List[Order]:
        return self.orders.list_all()

    def get_by_status(self, status: OrderStatus) -> List[Order]:
        return self.orders.list_by_status(OrderStatus(status))

    def get_by_user(self, user_id: int) -> List[Order]:
        return self.orders.list_by_user(user_id)
