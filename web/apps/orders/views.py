"""HTTP views for the orders app.

This module contains DRF API views used by the order service. Views are
kept intentionally small: they validate requests (via Pydantic), delegate
to the domain services, and return an HTTP response. Domain errors are not
handled here; they propagate to ``order_exception_handler`` which maps
each error kind to its status code and error body.

The views obtain their services from ``providers.get_order_services()``,
which wires HTTP adapter-backed ports (``HttpPriceQuoteClient``,
``HttpStockReservationClient``) or in-process stubs (``CatalogStub``,
``InventoryStub``) depending on runtime settings.
"""

import logging

from pydantic import ValidationError as SchemaError
from rest_framework import status
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .domain import OrderStatus
from .errors import ValidationError
from .schemas import OrderReadDTO, PlaceOrderDTO, UpdateOrderStatusDTO

logger = logging.getLogger("orders.api")


def _schema_message(exc: SchemaError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


def _bodies(orders) -> list:
    return [OrderReadDTO.from_domain(o).to_body() for o in orders]


class OrdersPingView(APIView):
    """Simple health-check endpoint for the orders module.

    Returns a minimal JSON payload used by liveness checks and by automated
    smoke-tests.
    """

    def get(self, request):
        return Response({"ok": True})


class PlaceOrderView(APIView):
    """Place an order by orchestrating catalog prices and inventory stock."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_create"

    def post(self, request):
        """Create a new order.

        Args:
            request (Request): DRF request with ``userId`` and ``bookOrder``.

        Returns:
            Response: 201 with the order representation. Failures are
            raised as order errors (400, 404, 409, 500, 503).
        """
        try:
            dto = PlaceOrderDTO.model_validate(request.data)
        except SchemaError as e:
            raise ValidationError(_schema_message(e)) from e

        logger.info(
            "POST %s | Initiating order placement",
            request.path,
            extra={"user_id": dto.user_id, "items_count": len(dto.book_order)},
        )
        order = providers.get_order_services().placement.place_order(dto.user_id, dto.book_order)
        return Response(OrderReadDTO.from_domain(order).to_body(), status=status.HTTP_201_CREATED)


class ListOrdersView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request):
        orders = providers.get_order_services().queries.get_all()
        logger.info("GET %s | Fetched orders", request.path, extra={"count": len(orders)})
        return Response(_bodies(orders))


class RetrieveOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_detail"

    def get(self, request, order_id: int):
        order = providers.get_order_services().queries.get_by_id(order_id)
        return Response(OrderReadDTO.from_domain(order).to_body())


class OrdersByStatusView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request, order_status: str):
        try:
            wanted = OrderStatus(order_status.upper())
        except ValueError as e:
            raise ValidationError(f"Unknown order status: {order_status}") from e
        orders = providers.get_order_services().queries.get_by_status(wanted)
        logger.info("GET %s | Fetched orders by status", request.path, extra={"count": len(orders)})
        return Response(_bodies(orders))


class OrdersByUserView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_list"

    def get(self, request, user_id: int):
        orders = providers.get_order_services().queries.get_by_user(user_id)
        logger.info("GET %s | Fetched orders for user", request.path, extra={"count": len(orders)})
        return Response(_bodies(orders))


class UpdateOrderStatusView(APIView):
    """Change the status of a non-terminal order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def patch(self, request, order_id: int):
        try:
            dto = UpdateOrderStatusDTO.model_validate(request.data)
        except SchemaError as e:
            raise ValidationError(_schema_message(e)) from e

        logger.info(
            "PATCH %s | Requested status update",
            request.path,
            extra={"order_id": order_id, "to_status": dto.order_status.value},
        )
        order = providers.get_order_services().lifecycle.change_status(order_id, dto.order_status)
        return Response(OrderReadDTO.from_domain(order).to_body())


class CancelOrderView(APIView):
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def delete(self, request, order_id: int):
        order = providers.get_order_services().lifecycle.cancel(order_id)
        return Response(OrderReadDTO.from_domain(order).to_body())


class DeleteOrderView(APIView):
    """Administrative soft delete of a single order."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def delete(self, request, order_id: int):
        providers.get_order_services().lifecycle.soft_delete(order_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class DeleteUserOrdersView(APIView):
    """Administrative soft delete of every order of one user."""

    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "orders_update"

    def delete(self, request, user_id: int):
        providers.get_order_services().lifecycle.soft_delete_user_orders(user_id)
        return Response(status=status.HTTP_204_NO_CONTENT)
