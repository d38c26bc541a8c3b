"""In-process adapters for the checkout ports.

These implement ``CatalogPort``, ``PaymentGatewayPort`` and
``OrderStorePort`` without network or database access. They are intended
for unit tests and local development where deterministic behavior is
useful and the payment provider is not reachable.
"""

import itertools
import threading
import uuid
from copy import deepcopy
from decimal import Decimal
from typing import Dict, List, Optional

from .domain import CaptureResult, GatewayOrder, GatewayOrderStatus, Order, PaymentGatewayPort, money
from .errors import DuplicateOrderError, GatewayUnavailableError


class InMemoryCatalog:
    """Catalog backed by a ``{product_id: price}`` dict."""

    def __init__(self, prices: Optional[Dict[int, Decimal]] = None):
        self.prices = {int(k): money(v) for k, v in (prices or {}).items()}

    def get_product_price(self, product_id: int) -> Optional[Decimal]:
        return self.prices.get(product_id)


class SandboxGatewayStub(PaymentGatewayPort):
    """Stub implementation of ``PaymentGatewayPort``.

    Keeps provider orders in memory. With ``auto_approve`` (the default)
    new orders start APPROVED, standing in for the payer approving in the
    browser; otherwise call ``approve`` explicitly. Capturing a COMPLETED
    order is a no-op that returns COMPLETED, like the real provider's
    ``ORDER_ALREADY_CAPTURED`` answer.
    """

    def __init__(self, auto_approve: bool = True):
        self.auto_approve = auto_approve
        self.orders: Dict[str, GatewayOrder] = {}
        self._by_request_id: Dict[str, str] = {}
        self._lock = threading.Lock()
        self.capture_calls = 0

    def acquire_access_token(self) -> str:
        return "stub-" + uuid.uuid4().hex

    def create_order(self, amount: Decimal, currency: str, request_id: Optional[str] = None) -> str:
        with self._lock:
            if request_id and request_id in self._by_request_id:
                return self._by_request_id[request_id]
            oid = uuid.uuid4().hex[:17].upper()
            status = GatewayOrderStatus.APPROVED if self.auto_approve else GatewayOrderStatus.CREATED
            self.orders[oid] = GatewayOrder(oid, status, money(amount), currency)
            if request_id:
                self._by_request_id[request_id] = oid
            return oid

    def approve(self, gateway_order_id: str):
        with self._lock:
            self.orders[gateway_order_id].status = GatewayOrderStatus.APPROVED

    def void(self, gateway_order_id: str):
        with self._lock:
            self.orders[gateway_order_id].status = GatewayOrderStatus.VOIDED

    def capture_order(self, gateway_order_id: str) -> CaptureResult:
        with self._lock:
            self.capture_calls += 1
            order = self.orders.get(gateway_order_id)
            if order is None:
                raise GatewayUnavailableError("RESOURCE_NOT_FOUND", status_code=404)
            if order.status == GatewayOrderStatus.APPROVED:
                order.status = GatewayOrderStatus.COMPLETED
            elif order.status in (GatewayOrderStatus.CREATED, GatewayOrderStatus.PAYER_ACTION_REQUIRED):
                raise GatewayUnavailableError("ORDER_NOT_APPROVED", status_code=422)
            raw = {"id": order.gateway_order_id, "status": order.status.value}
            if order.status != GatewayOrderStatus.COMPLETED:
                return CaptureResult(order.status, raw)
            return CaptureResult(order.status, raw, order.amount, order.currency)


class InMemoryOrderStore:
    """Order store keeping deep copies of orders in a dict.

    Enforces one order per gateway order id, like the unique column of the
    database-backed store.
    """

    def __init__(self):
        self.orders: Dict[int, Order] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.create_calls = 0

    def create_order(self, order: Order) -> int:
        with self._lock:
            self.create_calls += 1
            if order.gateway_order_id:
                for existing in self.orders.values():
                    if existing.gateway_order_id == order.gateway_order_id:
                        raise DuplicateOrderError(order.gateway_order_id, existing.id)
            oid = next(self._ids)
            stored = deepcopy(order)
            stored.id = oid
            self.orders[oid] = stored
            return oid

    def find_order_by_id(self, order_id: int) -> Optional[Order]:
        found = self.orders.get(order_id)
        return deepcopy(found) if found else None

    def find_order_by_gateway_id(self, gateway_order_id: str) -> Optional[Order]:
        for o in self.orders.values():
            if o.gateway_order_id == gateway_order_id:
                return deepcopy(o)
        return None

    def list_all(self) -> List[Order]:
        return [deepcopy(o) for o in self.orders.values()]
