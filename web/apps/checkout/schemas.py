"""Pydantic schemas for the cart, checkout and order endpoints.

Request schemas validate shape only; business rules (empty cart, address,
payment method) are checked by ``CheckoutService`` so every violation can
be reported together.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, field_serializer

from .domain import Order


class CartItemIn(BaseModel):
    product_id: int = Field(gt=0)
    quantity: int = Field(default=1, gt=0, le=1000)


class BeginCheckoutDTO(BaseModel):
    """Checkout form.

    Attributes:
        delivery_address: Free-text address; checked by the service.
        payment_method: One of the configured payment methods.
    """

    delivery_address: str = ""
    payment_method: str = ""


class SessionDTO(BaseModel):
    session: str = Field(min_length=1)


class CaptureDTO(BaseModel):
    """Body of the capture request.

    ``order_id`` is the provider order id the payer just approved.
    """

    session: str = Field(min_length=1)
    order_id: str = Field(min_length=1, max_length=64)


class StatusUpdateDTO(BaseModel):
    payment_status: Optional[str] = None
    order_status: Optional[str] = None


class LineItemOut(BaseModel):
    product_id: int
    unit_price: Decimal
    quantity: int

    @field_serializer("unit_price")
    def _money(self, v: Decimal) -> str:
        return f"{v:.2f}"


class CartOut(BaseModel):
    items: List[LineItemOut]
    dropped: List[int] = []
    size: int
    subtotal: Decimal
    shipping_fee: Decimal
    total: Decimal

    @field_serializer("subtotal", "shipping_fee", "total")
    def _money(self, v: Decimal) -> str:
        return f"{v:.2f}"


class OrderReadDTO(BaseModel):
    id: int
    client_id: str
    items: List[LineItemOut]
    shipping_fee: Decimal
    subtotal: Decimal
    total: Decimal
    delivery_address: str
    payment_method: str
    payment_status: str
    order_status: str
    gateway_order_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_serializer("shipping_fee", "subtotal", "total")
    def _money(self, v: Decimal) -> str:
        return f"{v:.2f}"

    @classmethod
    def from_order(cls, order: Order) -> "OrderReadDTO":
        return cls(
            id=order.id,
            client_id=order.client_id,
            items=[LineItemOut(product_id=i.product_id, unit_price=i.unit_price, quantity=i.quantity) for i in order.items],
            shipping_fee=order.shipping_fee,
            subtotal=order.subtotal,
            total=order.total,
            delivery_address=order.delivery_address,
            payment_method=order.payment_method.value,
            payment_status=order.payment_status.value,
            order_status=order.order_status.value,
            gateway_order_id=order.gateway_order_id,
            created_at=order.created_at,
        )


class AdminOrderReadDTO(OrderReadDTO):
    """Staff view: adds the raw provider response and the client's order count."""

    payment_details: dict = {}
    client_order_count: Optional[int] = None
