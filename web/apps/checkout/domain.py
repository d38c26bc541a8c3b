"""Domain models and ports for the checkout workflow.

This module contains the dataclasses that travel through a checkout attempt
(cart line items, the checkout session, the provider-side order and the
persisted order aggregate), the enums describing their lifecycles, and the
protocol definitions (ports) for the catalog, the payment gateway and the
order store.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

CENT = Decimal("0.01")


def money(value) -> Decimal:
    """Normalize a price or amount to a two-decimal ``Decimal``."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ---- Enums ----
class PaymentMethod(str, Enum):
    PAYPAL = "paypal"
    CREDIT_CARD = "credit_card"
    CASH_ON_DELIVERY = "cash_on_delivery"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REFUNDED = "refunded"


class OrderStatus(str, Enum):
    CREATED = "created"
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class GatewayOrderStatus(str, Enum):
    """Statuses reported by the payment provider for one of its orders.

    Only COMPLETED is a terminal success. VOIDED is a terminal failure.
    SAVED and PAYER_ACTION_REQUIRED are provider states the storefront never
    acts on; they are kept so they can be reported instead of rejected.
    """

    CREATED = "CREATED"
    SAVED = "SAVED"
    APPROVED = "APPROVED"
    PAYER_ACTION_REQUIRED = "PAYER_ACTION_REQUIRED"
    COMPLETED = "COMPLETED"
    VOIDED = "VOIDED"


class CheckoutState(str, Enum):
    """States of a single checkout attempt."""

    DRAFT = "DRAFT"
    PENDING_GATEWAY_ORDER = "PENDING_GATEWAY_ORDER"
    AWAITING_APPROVAL = "AWAITING_APPROVAL"
    CAPTURING = "CAPTURING"
    RECORDED = "RECORDED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    CAPTURED_UNRECORDED = "CAPTURED_UNRECORDED"


# ---- Entities / DTOs ----
@dataclass(frozen=True)
class CartLineItem:
    """A priced cart line.

    Attributes:
        product_id: Catalog identifier of the product.
        unit_price: Price read from the catalog when the cart was resolved.
        quantity: Units requested, always positive.
    """

    product_id: int
    unit_price: Decimal
    quantity: int

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def subtotal(items) -> Decimal:
    """Sum of ``unit_price * quantity`` over the line items."""
    return money(sum((i.line_total for i in items), Decimal("0")))


@dataclass(frozen=True)
class CheckoutSession:
    """Transient record of a checkout attempt before anything is persisted.

    Attributes:
        session_id: Random identifier, also used to de-duplicate gateway
            order creation for the attempt.
        client_id: Identity of the shopper who started the attempt.
        delivery_address: Validated delivery address.
        payment_method: Selected payment method.
        items: Snapshot of the resolved cart.
        shipping_fee: Flat shipping fee in force when the attempt started.
        currency: ISO currency code used for the gateway order.
        created_at: When the attempt started.
        dropped: Product ids removed from the cart because the catalog no
            longer has them; reported to the shopper, not carried in the
            session token.
    """

    session_id: str
    client_id: str
    delivery_address: str
    payment_method: PaymentMethod
    items: Tuple[CartLineItem, ...]
    shipping_fee: Decimal
    currency: str = "USD"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    dropped: Tuple[int, ...] = ()

    @property
    def subtotal(self) -> Decimal:
        return subtotal(self.items)

    @property
    def total(self) -> Decimal:
        return money(self.subtotal + self.shipping_fee)


@dataclass
class GatewayOrder:
    """Provider-owned order, as last observed by the storefront."""

    gateway_order_id: str
    status: GatewayOrderStatus
    amount: Optional[Decimal] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class CaptureResult:
    """Outcome of a capture call: observed status plus the raw provider body.

    ``amount`` and ``currency`` are what the provider reports as captured;
    both are None when the answer carries no capture (already captured).
    """

    status: GatewayOrderStatus
    raw: Dict[str, Any]
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == GatewayOrderStatus.COMPLETED


@dataclass
class Order:
    """Persisted order aggregate.

    Items are copied from the checkout session and never change after the
    order is created. Only the two statuses are mutated afterwards, by staff.
    """

    id: Optional[int]
    client_id: str
    items: List[CartLineItem]
    shipping_fee: Decimal
    delivery_address: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_details: Dict[str, Any] = field(default_factory=dict)
    order_status: OrderStatus = OrderStatus.CREATED
    gateway_order_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def subtotal(self) -> Decimal:
        return subtotal(self.items)

    @property
    def total(self) -> Decimal:
        return money(self.subtotal + self.shipping_fee)


# ---- Ports (DIP) ----
class CatalogPort(Protocol):
    """Read-only price lookup."""

    def get_product_price(self, product_id: int) -> Optional[Decimal]:
        """Return the current price, or None when the product does not exist."""
        raise NotImplementedError()


class PaymentGatewayPort(Protocol):
    """Operations offered by the external payment provider.

    Implementations raise ``GatewayAuthError``, ``GatewayUnavailableError``
    or ``GatewayProtocolError``. They never retry create or capture on
    their own.
    """

    def acquire_access_token(self) -> str:
        raise NotImplementedError()

    def create_order(self, amount: Decimal, currency: str, request_id: Optional[str] = None) -> str:
        """Create a provider order for ``amount`` and return its id."""
        raise NotImplementedError()

    def capture_order(self, gateway_order_id: str) -> CaptureResult:
        """Capture a payer-approved provider order.

        Capturing an order that is already COMPLETED returns COMPLETED.
        """
        raise NotImplementedError()


class OrderStorePort(Protocol):
    """Persistence boundary for orders."""

    def create_order(self, order: Order) -> int:
        """Persist ``order`` and return its id.

        Raises:
            DuplicateOrderError: If an order already exists for
                ``order.gateway_order_id``.
        """
        raise NotImplementedError()

    def find_order_by_id(self, order_id: int) -> Optional[Order]:
        raise NotImplementedError()

    def find_order_by_gateway_id(self, gateway_order_id: str) -> Optional[Order]:
        raise NotImplementedError()
