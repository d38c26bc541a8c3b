import pytest

from apps.checkout.cart import decode_cart_token

CART_URL = "/api/cart/"
ITEMS_URL = "/api/cart/items/"


@pytest.mark.django_db
def test_empty_cart(client, products):
    r = client.get(CART_URL)
    assert r.status_code == 200
    assert r.json() == {"items": [], "dropped": [], "size": 0, "subtotal": "0.00", "shipping_fee": "4.99", "total": "4.99"}


@pytest.mark.django_db
def test_add_items_sets_cookie_and_prices_from_catalog(client, products):
    r = client.post(ITEMS_URL, data={"product_id": 42, "quantity": 2}, content_type="application/json")
    assert r.status_code == 200
    r = client.post(ITEMS_URL, data={"product_id": 7}, content_type="application/json")
    assert r.status_code == 200
    body = r.json()
    assert body["size"] == 3
    assert body["subtotal"] == "44.98"
    assert body["total"] == "49.97"
    assert decode_cart_token(client.cookies["shopping_cart"].value) == ({42: 2, 7: 1}, False)


@pytest.mark.django_db
def test_add_unknown_product_is_404(client, products):
    r = client.post(ITEMS_URL, data={"product_id": 999}, content_type="application/json")
    assert r.status_code == 404
    assert r.json()["detail"] == "NOT_FOUND"


@pytest.mark.django_db
def test_add_rejects_bad_quantity(client, products):
    r = client.post(ITEMS_URL, data={"product_id": 42, "quantity": 0}, content_type="application/json")
    assert r.status_code == 400


@pytest.mark.django_db
def test_removed_product_is_reported_as_dropped(client, products, cart_cookie):
    cart_cookie(client, {42: 1, 7: 2})
    products[7].delete()
    body = client.get(CART_URL).json()
    assert [i["product_id"] for i in body["items"]] == [42]
    assert body["dropped"] == [7]
    assert body["subtotal"] == "19.99"


@pytest.mark.django_db
def test_malformed_cookie_is_cleared(client, products):
    client.cookies["shopping_cart"] = "not!!base64"
    r = client.get(CART_URL)
    assert r.status_code == 200
    assert r.json()["items"] == []
    assert r.cookies["shopping_cart"].value == ""


@pytest.mark.django_db
def test_remove_item_and_clear_cart(client, products, cart_cookie):
    cart_cookie(client, {42: 1, 7: 2})
    r = client.delete(f"{ITEMS_URL}42/")
    assert r.status_code == 200
    assert [i["product_id"] for i in r.json()["items"]] == [7]

    r = client.delete(f"{ITEMS_URL}7/")
    assert r.json()["size"] == 0
    assert r.cookies["shopping_cart"].value == ""

    cart_cookie(client, {42: 1})
    r = client.delete(CART_URL)
    assert r.status_code == 204
    assert r.cookies["shopping_cart"].value == ""
