"""API tests for reading orders and for the staff status update."""

from decimal import Decimal

import pytest

from apps.checkout.domain import CartLineItem, Order, PaymentMethod
from apps.checkout.repository import OrderRepository

LIST_URL = "/api/orders/"
DETAIL_URL = "/api/orders/{oid}/"
ADMIN_LIST_URL = "/api/admin/orders/"
ADMIN_DETAIL_URL = "/api/admin/orders/{oid}/"


def seed(client_id, gateway_order_id=None, method=PaymentMethod.CASH_ON_DELIVERY):
    order = Order(
        id=None,
        client_id=client_id,
        items=[CartLineItem(42, Decimal("19.99"), 1)],
        shipping_fee=Decimal("4.99"),
        delivery_address="1 Main St",
        payment_method=method,
        gateway_order_id=gateway_order_id,
    )
    return OrderRepository().create_order(order)


@pytest.mark.django_db
def test_client_lists_only_own_orders(shopper_client, shopper, products):
    mine = [seed(str(shopper.pk)) for _ in range(3)]
    seed("someone-else")

    r = shopper_client.get(LIST_URL, {"page_size": 2})
    assert r.status_code == 200
    body = r.json()
    assert body["count"] == 3
    assert body["total_pages"] == 2
    assert [o["id"] for o in body["results"]] == [mine[2], mine[1]]

    r = shopper_client.get(LIST_URL, {"page": 2, "page_size": 2})
    assert [o["id"] for o in r.json()["results"]] == [mine[0]]


@pytest.mark.django_db
def test_client_order_detail(shopper_client, shopper, products):
    oid = seed(str(shopper.pk))
    r = shopper_client.get(DETAIL_URL.format(oid=oid))
    assert r.status_code == 200
    body = r.json()
    assert body["id"] == oid
    assert body["total"] == "24.98"
    assert body["items"] == [{"product_id": 42, "unit_price": "19.99", "quantity": 1}]


@pytest.mark.django_db
def test_client_cannot_read_another_clients_order(shopper_client, products):
    oid = seed("someone-else")
    r = shopper_client.get(DETAIL_URL.format(oid=oid))
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_orders_require_login(client):
    assert client.get(LIST_URL).status_code == 403


@pytest.mark.django_db
def test_admin_endpoints_require_staff(shopper_client, products):
    oid = seed("x")
    assert shopper_client.get(ADMIN_LIST_URL).status_code == 403
    assert shopper_client.patch(ADMIN_DETAIL_URL.format(oid=oid), data={"order_status": "shipped"}, content_type="application/json").status_code == 403


@pytest.mark.django_db
def test_admin_lists_all_orders(staff_client, products):
    seed("a")
    seed("b")
    body = staff_client.get(ADMIN_LIST_URL).json()
    assert body["count"] == 2
    assert {o["client_id"] for o in body["results"]} == {"a", "b"}


@pytest.mark.django_db
def test_admin_detail_includes_payment_details_and_client_order_count(staff_client, products):
    seed("a")
    oid = seed("a", gateway_order_id="GW-1", method=PaymentMethod.PAYPAL)
    body = staff_client.get(ADMIN_DETAIL_URL.format(oid=oid)).json()
    assert body["gateway_order_id"] == "GW-1"
    assert body["client_order_count"] == 2
    assert body["payment_details"] == {}


@pytest.mark.django_db
def test_admin_updates_statuses(staff_client, products):
    oid = seed("a")
    r = staff_client.patch(
        ADMIN_DETAIL_URL.format(oid=oid),
        data={"payment_status": "accepted", "order_status": "Shipped"},
        content_type="application/json",
    )
    assert r.status_code == 200
    assert r.json()["payment_status"] == "accepted"
    assert r.json()["order_status"] == "shipped"


@pytest.mark.django_db
def test_admin_update_rejects_unknown_or_missing_status(staff_client, products):
    oid = seed("a")
    url = ADMIN_DETAIL_URL.format(oid=oid)

    r = staff_client.patch(url, data={}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["errors"] == ["at least one status must be provided"]

    r = staff_client.patch(url, data={"payment_status": "paid", "order_status": "lost"}, content_type="application/json")
    assert r.status_code == 400
    assert r.json()["errors"] == ["invalid payment status: paid", "invalid order status: lost"]


@pytest.mark.django_db
def test_admin_update_unknown_order_is_404(staff_client):
    r = staff_client.patch(ADMIN_DETAIL_URL.format(oid=9999), data={"order_status": "shipped"}, content_type="application/json")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"
