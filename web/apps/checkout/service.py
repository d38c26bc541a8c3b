"""Checkout orchestration: from a cart token to a recorded order.

``CheckoutService`` sequences a checkout attempt through the ports defined
in ``domain``. It performs no HTTP or ORM work itself.

A PayPal attempt moves through::

    DRAFT -> PENDING_GATEWAY_ORDER -> AWAITING_APPROVAL -> CAPTURING
          -> RECORDED | CAPTURE_FAILED | CAPTURED_UNRECORDED

Payer approval happens between AWAITING_APPROVAL and CAPTURING, in the
payer's browser, outside this system. CAPTURE_FAILED can be restarted by
creating a new gateway order from the same session. CAPTURED_UNRECORDED
means money moved without an order row and needs an operator.
"""

import logging
import uuid
from decimal import Decimal
from typing import Iterable, Optional

from .cart import resolve_cart
from .domain import (
    CatalogPort,
    CheckoutSession,
    CheckoutState,
    Order,
    OrderStatus,
    OrderStorePort,
    PaymentGatewayPort,
    PaymentMethod,
    PaymentStatus,
    money,
)
from .errors import (
    DuplicateOrderError,
    PaymentCapturedButNotRecordedError,
    PaymentNotCompletedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

MAX_ADDRESS_LENGTH = 200
EMPTY_CART = "empty cart"
MISSING_ADDRESS = "missing address"
ADDRESS_TOO_LONG = "address too long"
INVALID_METHOD = "invalid payment method"
MISSING_GATEWAY_ORDER = "missing gateway order id"
GATEWAY_ORDER_MISMATCH = "gateway order does not match checkout session"
INVALID_SESSION = "invalid checkout session"
AMOUNT_MISMATCH = "AMOUNT_MISMATCH"

OFFLINE_METHODS = frozenset({PaymentMethod.CASH_ON_DELIVERY, PaymentMethod.CREDIT_CARD})


class CheckoutService:
    """Domain service for the order capture workflow.

    Configuration is injected and never changes for the lifetime of the
    instance.

    Args:
        catalog: Price lookup used to resolve carts.
        gateway: Payment provider client.
        store: Order persistence.
        shipping_fee: Flat fee added to every order. Defaults to 0.
        currency: ISO currency for gateway orders. Defaults to USD.
        allowed_methods: Payment methods accepted by ``begin_checkout``.
            Defaults to every ``PaymentMethod``.
    """

    def __init__(
        self,
        catalog: CatalogPort,
        gateway: PaymentGatewayPort,
        store: OrderStorePort,
        shipping_fee: Decimal = Decimal("0"),
        currency: str = "USD",
        allowed_methods: Optional[Iterable[PaymentMethod]] = None,
    ):
        self.catalog = catalog
        self.gateway = gateway
        self.store = store
        self.shipping_fee = money(shipping_fee)
        self.currency = currency
        self.allowed_methods = frozenset(allowed_methods or PaymentMethod)

    def _transition(self, session: CheckoutSession, state: CheckoutState, **extra):
        logger.info(
            "checkout state %s",
            state.value,
            extra={"checkout_session": session.session_id, "state": state.value, **extra},
        )

    # ---- Draft ----

    def begin_checkout(
        self, cart_token: str | None, delivery_address: str | None, payment_method: str | None, client_id: str
    ) -> CheckoutSession:
        """Validate the checkout form and snapshot the cart.

        Every constraint is checked; all violations are reported together.

        Raises:
            ValidationError: With one or more of ``empty cart``,
                ``missing address``, ``address too long`` and
                ``invalid payment method``.
        """
        violations = []

        resolved = resolve_cart(cart_token, self.catalog)
        if not resolved.items:
            violations.append(EMPTY_CART)

        address = (delivery_address or "").strip()
        if not address:
            violations.append(MISSING_ADDRESS)
        elif len(address) > MAX_ADDRESS_LENGTH:
            violations.append(ADDRESS_TOO_LONG)

        method = None
        try:
            method = PaymentMethod((payment_method or "").strip().lower())
        except ValueError:
            pass
        if method is None or method not in self.allowed_methods:
            violations.append(INVALID_METHOD)

        if violations:
            raise ValidationError(violations)

        session = CheckoutSession(
            session_id=uuid.uuid4().hex,
            client_id=client_id,
            delivery_address=address,
            payment_method=method,
            items=tuple(resolved.items),
            shipping_fee=self.shipping_fee,
            currency=self.currency,
            dropped=tuple(resolved.dropped),
        )
        self._transition(session, CheckoutState.DRAFT, total=str(session.total), dropped=resolved.dropped)
        return session

    # ---- Gateway order ----

    def create_gateway_order(self, session: CheckoutSession) -> str:
        """Create the provider order for the session total.

        Gateway errors propagate unchanged. Nothing is persisted and the
        session stays valid, so the caller may simply try again.
        """
        if not session.items:
            raise ValidationError([EMPTY_CART])
        self._transition(session, CheckoutState.PENDING_GATEWAY_ORDER)
        gateway_order_id = self.gateway.create_order(session.total, session.currency, request_id=session.session_id)
        self._transition(session, CheckoutState.AWAITING_APPROVAL, gateway_order_id=gateway_order_id)
        return gateway_order_id

    # ---- Capture ----

    def complete_checkout(
        self,
        gateway_order_id: str,
        session: CheckoutSession,
        actor: str,
        expected_gateway_order_id: Optional[str] = None,
    ) -> Order:
        """Capture an approved provider order and record it.

        At most one order is recorded per ``gateway_order_id``: a replay by
        the same client returns the order recorded the first time.

        Args:
            expected_gateway_order_id: Provider order opened for this
                session. When given, any other id is rejected before the
                gateway is called.

        Raises:
            ValidationError: Missing gateway order id, empty snapshot, a
                non-PayPal session, a gateway order that belongs to another
                session, or an order already recorded for another client.
                No gateway call is made.
            GatewayError: Capture call failed; nothing was recorded.
            PaymentNotCompletedError: Capture status was not COMPLETED, or
                the captured amount differs from the session total.
            PaymentCapturedButNotRecordedError: Capture succeeded but the
                order could not be stored.
        """
        violations = []
        if not gateway_order_id:
            violations.append(MISSING_GATEWAY_ORDER)
        if not session.items:
            violations.append(EMPTY_CART)
        if session.payment_method != PaymentMethod.PAYPAL:
            violations.append(INVALID_METHOD)
        if gateway_order_id and expected_gateway_order_id is not None and gateway_order_id != expected_gateway_order_id:
            violations.append(GATEWAY_ORDER_MISMATCH)
        if violations:
            raise ValidationError(violations)

        existing = self.store.find_order_by_gateway_id(gateway_order_id)
        if existing is not None:
            logger.info("gateway order already recorded", extra={"gateway_order_id": gateway_order_id, "order_id": existing.id})
            return self._owned(existing, actor)

        self._transition(session, CheckoutState.CAPTURING, gateway_order_id=gateway_order_id)
        result = self.gateway.capture_order(gateway_order_id)
        if not result.completed:
            self._transition(session, CheckoutState.CAPTURE_FAILED, gateway_order_id=gateway_order_id, status=result.status.value)
            raise PaymentNotCompletedError(gateway_order_id, result.status.value)
        if result.amount is not None and (result.amount != session.total or result.currency != session.currency):
            self._transition(session, CheckoutState.CAPTURE_FAILED, gateway_order_id=gateway_order_id, status=AMOUNT_MISMATCH)
            logger.error(
                "captured amount differs from checkout total",
                extra={
                    "gateway_order_id": gateway_order_id,
                    "captured": f"{result.amount} {result.currency}",
                    "expected": f"{session.total} {session.currency}",
                },
            )
            raise PaymentNotCompletedError(gateway_order_id, AMOUNT_MISMATCH)

        order = Order(
            id=None,
            client_id=actor,
            items=list(session.items),
            shipping_fee=session.shipping_fee,
            delivery_address=session.delivery_address,
            payment_method=PaymentMethod.PAYPAL,
            payment_status=PaymentStatus.ACCEPTED,
            payment_details=result.raw,
            order_status=OrderStatus.PENDING,
            gateway_order_id=gateway_order_id,
        )
        try:
            order.id = self.store.create_order(order)
        except DuplicateOrderError as e:
            recorded = self.store.find_order_by_gateway_id(gateway_order_id)
            if recorded is None:
                raise self._captured_unrecorded(session, gateway_order_id, actor, e) from e
            logger.info("concurrent capture already recorded", extra={"gateway_order_id": gateway_order_id, "order_id": recorded.id})
            return self._owned(recorded, actor)
        except Exception as e:
            raise self._captured_unrecorded(session, gateway_order_id, actor, e) from e

        self._transition(session, CheckoutState.RECORDED, gateway_order_id=gateway_order_id, order_id=order.id)
        return order

    def _owned(self, order: Order, actor: str) -> Order:
        # Another client's order is never returned
        if order.client_id != actor:
            logger.warning("gateway order recorded for another client", extra={"gateway_order_id": order.gateway_order_id, "client_id": actor})
            raise ValidationError([INVALID_SESSION])
        return order

    def _captured_unrecorded(self, session: CheckoutSession, gateway_order_id: str, actor: str, cause: Exception):
        self._transition(session, CheckoutState.CAPTURED_UNRECORDED, gateway_order_id=gateway_order_id)
        logger.critical(
            "payment captured but order not recorded; manual reconciliation required",
            extra={
                "gateway_order_id": gateway_order_id,
                "client_id": actor,
                "amount": str(session.total),
                "currency": session.currency,
            },
            exc_info=cause,
        )
        return PaymentCapturedButNotRecordedError(gateway_order_id, cause)

    # ---- Offline payment ----

    def place_offline_order(self, session: CheckoutSession, actor: str) -> Order:
        """Record an order paid outside the gateway (card terminal, cash).

        The order starts with payment ``pending`` and status ``created``;
        staff update both once payment is collected.
        """
        violations = []
        if not session.items:
            violations.append(EMPTY_CART)
        if session.payment_method not in OFFLINE_METHODS:
            violations.append(INVALID_METHOD)
        if violations:
            raise ValidationError(violations)

        order = Order(
            id=None,
            client_id=actor,
            items=list(session.items),
            shipping_fee=session.shipping_fee,
            delivery_address=session.delivery_address,
            payment_method=session.payment_method,
        )
        order.id = self.store.create_order(order)
        self._transition(session, CheckoutState.RECORDED, order_id=order.id)
        return order
