"""Service provider helpers for wiring CheckoutService with ports.

``get_checkout_service`` returns a ``CheckoutService`` built from Django
settings. The catalog and order store are always the ORM-backed ones. The
payment gateway is the HTTP client when ``settings.USE_HTTP_ADAPTERS`` is
truthy, otherwise an in-process sandbox stub suitable for tests and local
development.

Both gateway instances are kept at module level: the HTTP client so its
access token cache outlives a single request, the stub so orders created
in one request can be captured in the next.
"""

from decimal import Decimal

from django.conf import settings

from .adapters import SandboxGatewayStub
from .domain import PaymentGatewayPort, PaymentMethod
from .http_adapters import PayPalGatewayClient
from .repository import OrderRepository, ProductCatalog
from .service import CheckoutService

_http_gateway: PayPalGatewayClient | None = None
_stub_gateway = SandboxGatewayStub()


def get_gateway() -> PaymentGatewayPort:
    global _http_gateway
    if getattr(settings, "USE_HTTP_ADAPTERS", True):
        if _http_gateway is None:
            _http_gateway = PayPalGatewayClient()
        return _http_gateway
    return _stub_gateway


def get_checkout_service() -> CheckoutService:
    """Return a CheckoutService configured from settings.

    Returns:
        CheckoutService: A service wired to the ORM catalog, the ORM order
        store and the configured payment gateway.
    """
    methods = getattr(settings, "CHECKOUT_PAYMENT_METHODS", None)
    return CheckoutService(
        catalog=ProductCatalog(),
        gateway=get_gateway(),
        store=OrderRepository(),
        shipping_fee=Decimal(str(getattr(settings, "CART_SHIPPING_FEE", "0"))),
        currency=getattr(settings, "PAYPAL_CURRENCY", "USD"),
        allowed_methods=[PaymentMethod(m) for m in methods] if methods else None,
    )
