import pytest

from apps.checkout import providers
from apps.checkout.adapters import SandboxGatewayStub
from apps.checkout.cart import encode_cart_token
from apps.checkout.http_adapters import _paypal_cb
from apps.checkout.models import ProductModel


@pytest.fixture(autouse=True)
def use_stubs_for_tests(settings, monkeypatch):
    settings.USE_HTTP_ADAPTERS = False
    settings.CART_SHIPPING_FEE = "4.99"
    settings.PAYPAL_CURRENCY = "USD"
    # Fresh provider state per test
    stub = SandboxGatewayStub()
    monkeypatch.setattr(providers, "_stub_gateway", stub)
    _paypal_cb.on_success()
    return stub


@pytest.fixture
def stub_gateway(use_stubs_for_tests):
    return use_stubs_for_tests


@pytest.fixture
def products(db):
    """Two catalog products: 42 at 19.99 and 7 at 5.00."""
    return {
        42: ProductModel.objects.create(id=42, name="Keyboard", price="19.99"),
        7: ProductModel.objects.create(id=7, name="Mouse pad", price="5.00"),
    }


@pytest.fixture
def shopper(django_user_model):
    return django_user_model.objects.create_user(username="shopper", password="pw-123456")


@pytest.fixture
def shopper_client(client, shopper):
    client.force_login(shopper)
    return client


@pytest.fixture
def staff_client(django_user_model):
    from django.test import Client

    staff = django_user_model.objects.create_user(username="staff", password="pw-123456", is_staff=True)
    c = Client()
    c.force_login(staff)
    return c


@pytest.fixture
def cart_cookie():
    """Return a helper that puts ``{product_id: qty}`` in a client's cart cookie."""

    def _set(client, cart):
        client.cookies["shopping_cart"] = encode_cart_token(cart)

    return _set
