"""Repository layer for the catalog and for persisting orders.

Both classes map between Django models and the domain dataclasses so the
checkout service never sees ORM types.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from django.db import IntegrityError, transaction

from .domain import CartLineItem, Order, OrderStatus, PaymentMethod, PaymentStatus
from .errors import DuplicateOrderError, OrderNotFoundError, ValidationError
from .models import OrderItemModel, OrderModel, ProductModel


class ProductCatalog:
    """``CatalogPort`` over the products table."""

    def get_product_price(self, product_id: int) -> Optional[Decimal]:
        return ProductModel.objects.filter(pk=product_id).values_list("price", flat=True).first()


def _to_domain(obj: OrderModel) -> Order:
    return Order(
        id=obj.id,
        client_id=obj.client_id,
        items=[CartLineItem(i.product_id_snapshot, i.unit_price, i.quantity) for i in obj.items.all()],
        shipping_fee=obj.shipping_fee,
        delivery_address=obj.delivery_address,
        payment_method=PaymentMethod(obj.payment_method),
        payment_status=PaymentStatus(obj.payment_status),
        payment_details=obj.payment_details or {},
        order_status=OrderStatus(obj.order_status),
        gateway_order_id=obj.gateway_order_id,
        created_at=obj.created_at,
    )


class OrderRepository:
    """Repository that persists Order aggregates using Django ORM.

    The header row and its item rows are written in a single transaction.
    Uniqueness of ``gateway_order_id`` is enforced by the database, which
    makes concurrent captures of the same provider order record one row.
    """

    def create_order(self, order: Order) -> int:
        """Persist a new order and its items.

        Args:
            order: Domain ``Order`` to persist; ``order.id`` is ignored.

        Returns:
            int: The new order id.

        Raises:
            DuplicateOrderError: If an order already exists for
                ``order.gateway_order_id``.
        """
        known = set(
            ProductModel.objects.filter(pk__in=[i.product_id for i in order.items]).values_list("pk", flat=True)
        )
        try:
            with transaction.atomic():
                obj = OrderModel.objects.create(
                    client_id=order.client_id,
                    shipping_fee=order.shipping_fee,
                    delivery_address=order.delivery_address,
                    payment_method=order.payment_method.value,
                    payment_status=order.payment_status.value,
                    payment_details=order.payment_details,
                    order_status=order.order_status.value,
                    gateway_order_id=order.gateway_order_id or None,
                )
                OrderItemModel.objects.bulk_create([
                    OrderItemModel(
                        order=obj,
                        product_id=i.product_id if i.product_id in known else None,
                        product_id_snapshot=i.product_id,
                        unit_price=i.unit_price,
                        quantity=i.quantity,
                    )
                    for i in order.items
                ])
        except IntegrityError:
            if order.gateway_order_id:
                existing = OrderModel.objects.filter(gateway_order_id=order.gateway_order_id).values_list("pk", flat=True).first()
                if existing is not None:
                    raise DuplicateOrderError(order.gateway_order_id, existing)
            raise
        return obj.id

    def find_order_by_id(self, order_id: int) -> Optional[Order]:
        obj = OrderModel.objects.prefetch_related("items").filter(pk=order_id).first()
        return _to_domain(obj) if obj else None

    def find_order_by_gateway_id(self, gateway_order_id: str) -> Optional[Order]:
        obj = OrderModel.objects.prefetch_related("items").filter(gateway_order_id=gateway_order_id).first()
        return _to_domain(obj) if obj else None

    def count_orders(self, client_id: Optional[str] = None) -> int:
        qs = OrderModel.objects.all()
        if client_id is not None:
            qs = qs.filter(client_id=client_id)
        return qs.count()

    def list_orders(self, page: int, page_size: int, client_id: Optional[str] = None) -> Tuple[List[Order], int]:
        """Return one page of orders, newest first, and the total page count.

        Pages below 1 are treated as page 1.
        """
        page = max(page, 1)
        qs = OrderModel.objects.prefetch_related("items").order_by("-created_at", "-id")
        if client_id is not None:
            qs = qs.filter(client_id=client_id)
        total = qs.count()
        pages = (total + page_size - 1) // page_size
        start = (page - 1) * page_size
        return [_to_domain(o) for o in qs[start:start + page_size]], pages

    def update_status(self, order_id: int, payment_status: Optional[str] = None, order_status: Optional[str] = None) -> Order:
        """Change the payment and/or order status of an order.

        Raises:
            ValidationError: No status given, or an unknown value.
            OrderNotFoundError: No order with ``order_id``.
        """
        violations = []
        if not payment_status and not order_status:
            violations.append("at least one status must be provided")
        if payment_status and payment_status.lower() not in PaymentStatus._value2member_map_:
            violations.append(f"invalid payment status: {payment_status}")
        if order_status and order_status.lower() not in OrderStatus._value2member_map_:
            violations.append(f"invalid order status: {order_status}")
        if violations:
            raise ValidationError(violations)

        with transaction.atomic():
            obj = OrderModel.objects.select_for_update().filter(pk=order_id).first()
            if obj is None:
                raise OrderNotFoundError(f"order {order_id} not found")
            fields = []
            if payment_status:
                obj.payment_status = payment_status.lower()
                fields.append("payment_status")
            if order_status:
                obj.order_status = order_status.lower()
                fields.append("order_status")
            obj.save(update_fields=fields)
        return self.find_order_by_id(order_id)
