"""Integration tests for the ORM-backed catalog, order store and idempotency records."""

from datetime import timedelta
from decimal import Decimal

import pytest
from django.db import connection
from django.utils import timezone

from apps.checkout.domain import CartLineItem, Order, OrderStatus, PaymentMethod, PaymentStatus
from apps.checkout.errors import DuplicateOrderError, OrderNotFoundError, ValidationError
from apps.checkout.idempotency import bound_gateway_order, finalize, get_or_create_idempotent, release
from apps.checkout.models import IdempotencyKey
from apps.checkout.repository import OrderRepository, ProductCatalog


def paypal_order(gateway_order_id="GW-1", client_id="c1"):
    return Order(
        id=None,
        client_id=client_id,
        items=[CartLineItem(42, Decimal("19.99"), 2), CartLineItem(7, Decimal("5.00"), 1)],
        shipping_fee=Decimal("4.99"),
        delivery_address="1 Main St",
        payment_method=PaymentMethod.PAYPAL,
        payment_status=PaymentStatus.ACCEPTED,
        payment_details={"id": gateway_order_id, "status": "COMPLETED"},
        order_status=OrderStatus.PENDING,
        gateway_order_id=gateway_order_id,
    )


@pytest.mark.django_db
def test_catalog_reads_current_price(products):
    catalog = ProductCatalog()
    assert catalog.get_product_price(42) == Decimal("19.99")
    assert catalog.get_product_price(999) is None


@pytest.mark.django_db
def test_create_order_persists_header_and_items(products):
    repo = OrderRepository()
    oid = repo.create_order(paypal_order())

    with connection.cursor() as cur:
        cur.execute("select payment_status, order_status, gateway_order_id from orders where id = %s", [oid])
        assert cur.fetchone() == ("accepted", "pending", "GW-1")
        cur.execute("select product_id_snapshot, quantity from order_items where order_id = %s order by id", [oid])
        assert cur.fetchall() == [(42, 2), (7, 1)]

    found = repo.find_order_by_gateway_id("GW-1")
    assert found.id == oid
    assert found.total == Decimal("49.97")
    assert found.payment_details["status"] == "COMPLETED"
    assert repo.find_order_by_id(oid).items == found.items


@pytest.mark.django_db
def test_second_order_for_same_gateway_order_is_rejected(products):
    repo = OrderRepository()
    first = repo.create_order(paypal_order())
    with pytest.raises(DuplicateOrderError) as e:
        repo.create_order(paypal_order())
    assert e.value.existing_id == first
    assert repo.count_orders() == 1


@pytest.mark.django_db
def test_orders_without_gateway_id_do_not_collide(products):
    repo = OrderRepository()
    repo.create_order(paypal_order(gateway_order_id=None))
    repo.create_order(paypal_order(gateway_order_id=None))
    assert repo.count_orders() == 2


@pytest.mark.django_db
def test_items_survive_product_deletion(products):
    repo = OrderRepository()
    oid = repo.create_order(paypal_order())
    products[42].delete()
    assert [i.product_id for i in repo.find_order_by_id(oid).items] == [42, 7]


@pytest.mark.django_db
def test_list_orders_pages(products):
    repo = OrderRepository()
    ids = [repo.create_order(paypal_order(f"GW-{n}", client_id="c1")) for n in range(5)]
    repo.create_order(paypal_order("GW-x", client_id="c2"))

    page, pages = repo.list_orders(1, 2, client_id="c1")
    assert pages == 3
    assert [o.id for o in page] == [ids[4], ids[3]]
    page, _ = repo.list_orders(3, 2, client_id="c1")
    assert [o.id for o in page] == [ids[0]]
    assert repo.count_orders("c2") == 1


@pytest.mark.django_db
def test_update_status(products):
    repo = OrderRepository()
    oid = repo.create_order(paypal_order())
    updated = repo.update_status(oid, order_status="SHIPPED")
    assert updated.order_status == OrderStatus.SHIPPED
    assert updated.payment_status == PaymentStatus.ACCEPTED

    with pytest.raises(ValidationError):
        repo.update_status(oid)
    with pytest.raises(OrderNotFoundError):
        repo.update_status(oid + 100, payment_status="refunded")


@pytest.mark.django_db
def test_idempotency_record_lifecycle():
    existing, rec = get_or_create_idempotent("sess-1", {"session": "sess-1", "total": "49.97"})
    assert existing is False

    existing, again = get_or_create_idempotent("sess-1", {"session": "sess-1", "total": "49.97"})
    assert existing is True and again.response_status == 0

    finalize(rec, 201, {"id": "GW-1"}, gateway_order_id="GW-1")
    _, done = get_or_create_idempotent("sess-1", {"session": "sess-1", "total": "49.97"})
    assert (done.response_status, done.response_body, done.gateway_order_id) == (201, {"id": "GW-1"}, "GW-1")

    # A finalized record is never released
    release(done)
    assert get_or_create_idempotent("sess-1", {"session": "sess-1", "total": "49.97"})[0] is True

    with pytest.raises(ValueError) as e:
        get_or_create_idempotent("sess-1", {"session": "sess-1", "total": "1.00"})
    assert str(e.value) == "IDEMPOTENCY_CONFLICT"


@pytest.mark.django_db
def test_released_record_can_be_recreated():
    _, rec = get_or_create_idempotent("sess-2", {"session": "sess-2"})
    release(rec)
    existing, _ = get_or_create_idempotent("sess-2", {"session": "sess-2"})
    assert existing is False


@pytest.mark.django_db
def test_stale_in_flight_record_is_taken_over():
    _, rec = get_or_create_idempotent("sess-3", {"session": "sess-3"})
    IdempotencyKey.objects.filter(pk=rec.pk).update(created_at=timezone.now() - timedelta(seconds=60))

    existing, taken = get_or_create_idempotent("sess-3", {"session": "sess-3"}, stale_after=10)
    assert existing is False
    assert taken.pk == rec.pk
    # Taken over just now, so the next request waits again
    assert get_or_create_idempotent("sess-3", {"session": "sess-3"}, stale_after=10)[0] is True


@pytest.mark.django_db
def test_bound_gateway_order_only_after_finalize():
    _, rec = get_or_create_idempotent("sess-4", {"session": "sess-4"})
    assert bound_gateway_order("sess-4") is None
    finalize(rec, 201, {"id": "GW-4"}, gateway_order_id="GW-4")
    assert bound_gateway_order("sess-4") == "GW-4"
    assert bound_gateway_order("sess-unknown") is None
