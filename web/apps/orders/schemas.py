"""Pydantic schemas for orders.

This module exposes the request validation schemas and the read
representation used by the orders API. Wire names are camelCase and are
mapped onto snake_case attributes through aliases.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_serializer, field_validator

from .domain import Order, OrderStatus


class PlaceOrderDTO(BaseModel):
    """Schema for placing an order.

    Attributes:
        user_id: Positive id of the ordering customer (``userId``).
        book_order: Mapping of book id to quantity (``bookOrder``). JSON
            object keys arrive as strings and are coerced to integers.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: int = Field(alias="userId", gt=0, strict=True)
    # JSON object keys are strings, so ids stay lax; quantities must be real ints
    book_order: Dict[int, StrictInt] = Field(alias="bookOrder", min_length=1)

    @field_validator("book_order")
    @classmethod
    def validate_book_order(cls, v: Dict[int, int]) -> Dict[int, int]:
        """Reject non-positive book ids and quantities.

        Raises:
            ValueError: Naming the offending book ids.
        """
        bad_ids = sorted(b for b in v if b <= 0)
        if bad_ids:
            raise ValueError(f"Book ids must be positive: {bad_ids}")
        bad_qty = sorted(b for b, q in v.items() if q <= 0)
        if bad_qty:
            raise ValueError(f"Quantities must be positive for BookIDs: {bad_qty}")
        return v


class UpdateOrderStatusDTO(BaseModel):
    """Schema for a status update; ``orderStatus`` must be a known status."""

    model_config = ConfigDict(populate_by_name=True)

    order_status: OrderStatus = Field(alias="orderStatus")

    @field_validator("order_status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        return v.upper() if isinstance(v, str) else v


class OrderReadDTO(BaseModel):
    """Read representation of an order."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: int = Field(alias="orderId")
    user_id: int = Field(alias="userId")
    book_order: Dict[str, int] = Field(alias="bookOrder")
    book_ids: List[int] = Field(alias="bookIds")
    order_total_amount: Decimal = Field(alias="orderTotalAmount")
    order_date_time: datetime = Field(alias="orderDateTime")
    order_status: OrderStatus = Field(alias="orderStatus")

    @field_serializer("order_total_amount")
    def serialize_amount(self, v: Decimal) -> float:
        return float(v)

    @classmethod
    def from_domain(cls, order: Order) -> "OrderReadDTO":
        return cls(
            order_id=order.order_id,
            user_id=order.user_id,
            book_order={str(b): q for b, q in sorted(order.line_items.items())},
            book_ids=order.book_ids,
            order_total_amount=order.total_amount,
            order_date_time=order.order_date_time,
            order_status=order.status,
        )

    def to_body(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")
