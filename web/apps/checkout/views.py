"""HTTP views for the checkout app.

This module contains the DRF API views for the cart, the checkout flow and
order reads. Views are kept small: they validate requests (via Pydantic),
hand the cart cookie and the signed checkout session to the domain service
obtained from ``providers.get_checkout_service()``, and map
``CheckoutError`` codes to HTTP responses.

Checkout flow for PayPal:

1. ``POST /api/checkout/`` validates the form and returns a signed session.
2. ``POST /api/checkout/gateway-order/`` opens the provider order. Repeated
   calls for the same session return the same provider order id.
3. The payer approves the order in the browser.
4. ``POST /api/checkout/capture/`` captures and records the order, then
   clears the cart cookie.

Offline methods skip steps 2-3 and call ``POST /api/checkout/place/``.
"""

import logging

from django.conf import settings
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import ScopedRateThrottle
from rest_framework.views import APIView

from . import providers
from .cart import add_to_cart, decode_cart_token, encode_cart_token, remove_from_cart, resolve_cart
from .domain import PaymentMethod, money
from .errors import (
    CheckoutError,
    DuplicateOrderError,
    GatewayAuthError,
    GatewayProtocolError,
    GatewayUnavailableError,
    OrderNotFoundError,
    PaymentCapturedButNotRecordedError,
    PaymentNotCompletedError,
    ValidationError,
)
from .idempotency import bound_gateway_order, finalize, get_or_create_idempotent, release
from .models import ProductModel
from .repository import OrderRepository, ProductCatalog
from .schemas import (
    AdminOrderReadDTO,
    BeginCheckoutDTO,
    CaptureDTO,
    CartItemIn,
    CartOut,
    LineItemOut,
    OrderReadDTO,
    SessionDTO,
    StatusUpdateDTO,
)
from .service import GATEWAY_ORDER_MISMATCH, INVALID_METHOD
from .sessions import dump_session, load_session

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    PaymentNotCompletedError: status.HTTP_402_PAYMENT_REQUIRED,
    OrderNotFoundError: status.HTTP_404_NOT_FOUND,
    DuplicateOrderError: status.HTTP_409_CONFLICT,
    GatewayAuthError: status.HTTP_502_BAD_GATEWAY,
    GatewayProtocolError: status.HTTP_502_BAD_GATEWAY,
    GatewayUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
    PaymentCapturedButNotRecordedError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def error_response(exc: CheckoutError) -> Response:
    """Map a CheckoutError to ``{"detail": code, ...}`` and its status."""
    body = {"detail": exc.code}
    if isinstance(exc, ValidationError):
        body["errors"] = exc.violations
    if isinstance(exc, GatewayUnavailableError) and exc.outcome_unknown:
        body["outcome_unknown"] = True
    if isinstance(exc, PaymentCapturedButNotRecordedError):
        body["gateway_order_id"] = exc.gateway_order_id
    code = next((s for cls, s in ERROR_STATUS.items() if isinstance(exc, cls)), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return Response(body, status=code)


def _bad_request(e: PydanticValidationError) -> Response:
    return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)


def _cookie_name() -> str:
    return getattr(settings, "CART_COOKIE_NAME", "shopping_cart")


def _shipping_fee():
    return money(getattr(settings, "CART_SHIPPING_FEE", "0"))


def _client_id(request) -> str:
    return str(request.user.pk)


def _int_param(request, name: str, default: int) -> int:
    try:
        return max(1, int(request.GET.get(name, default)))
    except (TypeError, ValueError):
        return default


def _store_cart(response: Response, cart: dict):
    if cart:
        response.set_cookie(
            _cookie_name(),
            encode_cart_token(cart),
            max_age=getattr(settings, "CART_COOKIE_MAX_AGE", 60 * 60 * 24 * 365),
            httponly=True,
            samesite="Lax",
        )
    else:
        response.delete_cookie(_cookie_name())


def _load_owned_session(request, token: str):
    session = load_session(token)
    if session.client_id != _client_id(request):
        raise ValidationError(["invalid checkout session"])
    return session


def _cart_body(token: str | None) -> tuple[dict, bool]:
    resolved = resolve_cart(token, ProductCatalog())
    fee = _shipping_fee()
    out = CartOut(
        items=[LineItemOut(product_id=i.product_id, unit_price=i.unit_price, quantity=i.quantity) for i in resolved.items],
        dropped=resolved.dropped,
        size=resolved.size,
        subtotal=resolved.subtotal,
        shipping_fee=fee,
        total=resolved.total(fee),
    )
    return out.model_dump(mode="json"), resolved.invalid


def _page(orders, pages, page, page_size, count) -> dict:
    return {
        "count": count,
        "page": page,
        "page_size": page_size,
        "total_pages": pages,
        "results": [OrderReadDTO.from_order(o).model_dump(mode="json") for o in orders],
    }


# ---------------- Cart ---------------- #

class CartView(APIView):
    """Resolved cart read from the ``shopping_cart`` cookie."""

    def get(self, request):
        body, invalid = _cart_body(request.COOKIES.get(_cookie_name()))
        resp = Response(body)
        if invalid:
            resp.delete_cookie(_cookie_name())
        return resp

    def delete(self, request):
        resp = Response(status=status.HTTP_204_NO_CONTENT)
        resp.delete_cookie(_cookie_name())
        return resp


class CartItemsView(APIView):
    def post(self, request):
        """Add units of a product to the cart cookie."""
        try:
            dto = CartItemIn.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)
        if not ProductModel.objects.filter(pk=dto.product_id).exists():
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)

        cart, _ = decode_cart_token(request.COOKIES.get(_cookie_name()))
        cart = add_to_cart(cart, dto.product_id, dto.quantity)
        token = encode_cart_token(cart)
        body, _ = _cart_body(token)
        resp = Response(body)
        _store_cart(resp, cart)
        return resp


class CartItemDetailView(APIView):
    def delete(self, request, product_id: int):
        cart, _ = decode_cart_token(request.COOKIES.get(_cookie_name()))
        cart = remove_from_cart(cart, product_id)
        body, _ = _cart_body(encode_cart_token(cart) if cart else None)
        resp = Response(body)
        _store_cart(resp, cart)
        return resp


# ---------------- Checkout ---------------- #

class CheckoutView(APIView):
    """Start a checkout attempt.

    Returns 201 with the signed ``session`` and the priced snapshot, or 400
    with ``{"detail": "VALIDATION_ERROR", "errors": [...]}`` listing every
    violated constraint.
    """

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = BeginCheckoutDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)

        service = providers.get_checkout_service()
        try:
            session = service.begin_checkout(
                request.COOKIES.get(_cookie_name()), dto.delivery_address, dto.payment_method, _client_id(request)
            )
        except CheckoutError as e:
            return error_response(e)

        return Response(
            {
                "session": dump_session(session),
                "delivery_address": session.delivery_address,
                "payment_method": session.payment_method.value,
                "items": [LineItemOut(product_id=i.product_id, unit_price=i.unit_price, quantity=i.quantity).model_dump(mode="json") for i in session.items],
                "subtotal": f"{session.subtotal:.2f}",
                "shipping_fee": f"{session.shipping_fee:.2f}",
                "total": f"{session.total:.2f}",
                "currency": session.currency,
                "dropped": list(session.dropped),
            },
            status=status.HTTP_201_CREATED,
        )


class GatewayOrderView(APIView):
    """Open the provider order for a PayPal checkout session.

    Returns:
        Response: One of the following responses.
            - 201 with ``{"id": gateway_order_id}``.
            - 201 replayed (``Idempotent-Replay: true``) for a session that
              already has a provider order.
            - 409 ``REQUEST_IN_PROGRESS`` while another request for the same
              session is still talking to the provider.
            - 400 / 502 / 503 per ``error_response``.
    """

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = SessionDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)

        try:
            session = _load_owned_session(request, dto.session)
            if session.payment_method != PaymentMethod.PAYPAL:
                raise ValidationError([INVALID_METHOD])
        except CheckoutError as e:
            return error_response(e)

        try:
            existing, rec = get_or_create_idempotent(session.session_id, {"session": session.session_id, "total": str(session.total)})
        except ValueError:
            return Response({"detail": "IDEMPOTENCY_CONFLICT"}, status=status.HTTP_409_CONFLICT)
        if existing:
            if not rec.response_status:
                return Response({"detail": "REQUEST_IN_PROGRESS"}, status=status.HTTP_409_CONFLICT)
            resp = Response(rec.response_body, status=rec.response_status)
            resp["Idempotent-Replay"] = "true"
            return resp

        service = providers.get_checkout_service()
        try:
            gateway_order_id = service.create_gateway_order(session)
        except CheckoutError as e:
            release(rec)
            return error_response(e)

        body = {"id": gateway_order_id}
        finalize(rec, status.HTTP_201_CREATED, body, gateway_order_id=gateway_order_id)
        return Response(body, status=status.HTTP_201_CREATED)


class CaptureView(APIView):
    """Capture the approved provider order and record the order.

    Only the provider order opened for the session through
    ``GatewayOrderView`` can be captured with it; any other id is a 400.

    Returns 201 with the order (also for a replay of an already recorded
    capture), 402 ``PAYMENT_NOT_COMPLETED``, or 500
    ``PAYMENT_CAPTURED_NOT_RECORDED`` when money moved but the order could
    not be saved.
    """

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = CaptureDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)

        service = providers.get_checkout_service()
        try:
            session = _load_owned_session(request, dto.session)
            expected = bound_gateway_order(session.session_id)
            if dto.order_id and expected is None:
                raise ValidationError([GATEWAY_ORDER_MISMATCH])
            order = service.complete_checkout(dto.order_id, session, _client_id(request), expected_gateway_order_id=expected)
        except CheckoutError as e:
            return error_response(e)

        resp = Response(OrderReadDTO.from_order(order).model_dump(mode="json"), status=status.HTTP_201_CREATED)
        resp.delete_cookie(_cookie_name())
        return resp


class PlaceOrderView(APIView):
    """Record an order paid on delivery or by card outside the gateway."""

    permission_classes = [IsAuthenticated]
    throttle_classes = [ScopedRateThrottle]
    throttle_scope = "checkout"

    def post(self, request):
        try:
            dto = SessionDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)

        service = providers.get_checkout_service()
        try:
            session = _load_owned_session(request, dto.session)
            order = service.place_offline_order(session, _client_id(request))
        except CheckoutError as e:
            return error_response(e)

        resp = Response(OrderReadDTO.from_order(order).model_dump(mode="json"), status=status.HTTP_201_CREATED)
        resp.delete_cookie(_cookie_name())
        return resp


# ---------------- Orders ---------------- #

class ClientOrdersView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request):
        page = _int_param(request, "page", 1)
        page_size = min(_int_param(request, "page_size", getattr(settings, "ORDERS_PAGE_SIZE", 10)), 100)
        repo = OrderRepository()
        client_id = _client_id(request)
        orders, pages = repo.list_orders(page, page_size, client_id=client_id)
        return Response(_page(orders, pages, page, page_size, repo.count_orders(client_id)))


class ClientOrderDetailView(APIView):
    permission_classes = [IsAuthenticated]

    def get(self, request, oid: int):
        order = OrderRepository().find_order_by_id(oid)
        # Another client's order is reported as missing
        if order is None or order.client_id != _client_id(request):
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(OrderReadDTO.from_order(order).model_dump(mode="json"))


class AdminOrdersView(APIView):
    permission_classes = [IsAdminUser]

    def get(self, request):
        page = _int_param(request, "page", 1)
        page_size = min(_int_param(request, "page_size", getattr(settings, "ORDERS_PAGE_SIZE", 10)), 100)
        repo = OrderRepository()
        orders, pages = repo.list_orders(page, page_size)
        return Response(_page(orders, pages, page, page_size, repo.count_orders()))


class AdminOrderDetailView(APIView):
    permission_classes = [IsAdminUser]

    def _render(self, repo: OrderRepository, order) -> dict:
        base = OrderReadDTO.from_order(order).model_dump()
        dto = AdminOrderReadDTO(
            **base,
            payment_details=order.payment_details,
            client_order_count=repo.count_orders(order.client_id),
        )
        return dto.model_dump(mode="json")

    def get(self, request, oid: int):
        repo = OrderRepository()
        order = repo.find_order_by_id(oid)
        if order is None:
            return Response({"detail": "NOT_FOUND"}, status=status.HTTP_404_NOT_FOUND)
        return Response(self._render(repo, order))

    def patch(self, request, oid: int):
        """Update payment and/or order status; at least one is required."""
        try:
            dto = StatusUpdateDTO.model_validate(request.data)
        except PydanticValidationError as e:
            return _bad_request(e)

        repo = OrderRepository()
        try:
            order = repo.update_status(oid, dto.payment_status, dto.order_status)
        except CheckoutError as e:
            return error_response(e)
        logger.info(
            "order status updated",
            extra={"order_id": oid, "payment_status": order.payment_status.value, "order_status": order.order_status.value, "staff_id": request.user.pk},
        )
        return Response(self._render(repo, order))
