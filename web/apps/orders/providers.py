"""Service provider helpers for wiring the order services with ports.

This module exposes ``get_order_services`` which returns the placement
orchestrator, the lifecycle state machine and the query service sharing one
repository. When ``settings.USE_HTTP_ADAPTERS`` is truthy the orchestrator
talks to the catalog and inventory services over HTTP; otherwise it uses
process-wide in-memory stubs suitable for tests and local development.
Orders are always persisted through the Django ORM repository.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from django.conf import settings

from .adapters import CatalogStub, InventoryStub
from .domain import OrderPlacementOrchestrator
from .http_adapters import HttpPriceQuoteClient, HttpStockReservationClient
from .lifecycle import OrderLifecycleStateMachine, OrderQueryService
from .repository import DjangoOrderRepository

# Shared so stub stock survives across requests in local runs
_catalog_stub = CatalogStub()
_inventory_stub = InventoryStub()

# one pool per process; HTTP_TIMEOUT_SECS bounds tasks left running after a placement timeout
_placement_pool = ThreadPoolExecutor(
    max_workers=getattr(settings, "ORDER_PLACEMENT_WORKERS", 16),
    thread_name_prefix="order-placement",
)


@dataclass
class OrderServices:
    placement: OrderPlacementOrchestrator
    lifecycle: OrderLifecycleStateMachine
    queries: OrderQueryService


def get_order_services() -> OrderServices:
    """Return configured order services.

    Returns:
        OrderServices: Placement, lifecycle and query services.
    """
    repo = DjangoOrderRepository()
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        quotes, stock = HttpPriceQuoteClient(), HttpStockReservationClient()
    else:
        quotes, stock = _catalog_stub, _inventory_stub

    return OrderServices(
        placement=OrderPlacementOrchestrator(
            quotes,
            stock,
            repo,
            timeout=getattr(settings, "ORDER_PLACEMENT_TIMEOUT_SECS", None),
            executor=_placement_pool,
        ),
        lifecycle=OrderLifecycleStateMachine(repo),
        queries=OrderQueryService(repo),
    )
