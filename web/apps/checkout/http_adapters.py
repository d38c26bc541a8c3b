"""HTTP client for the payment provider with token caching and a circuit breaker.

This module implements ``PaymentGatewayPort`` over the provider's REST API
using ``httpx``. It adds:

- Request correlation: propagates ``X-Request-ID`` from the ContextVar set
    by the gateway middleware.
- OAuth2 client-credentials tokens cached until shortly before expiry. A
    401 on an order call drops the cached token and the call is sent once
    more with a fresh one.
- A circuit breaker that fails fast while the provider is unhealthy, with
    HALF_OPEN probing after a timeout.
- Provider idempotency: ``create_order`` forwards the caller's request id as
    ``PayPal-Request-Id``.

Order creation and capture are never retried on 5xx or transport errors:
a capture may have succeeded even when the response was lost, and only
the caller can decide to ask again.
"""

import logging
import threading
import time
from decimal import Decimal
from typing import Optional
from urllib.parse import quote

import httpx
from django.conf import settings
from django.utils.module_loading import import_string

from .domain import CaptureResult, GatewayOrderStatus, PaymentGatewayPort, money
from .errors import GatewayAuthError, GatewayProtocolError, GatewayUnavailableError

logger = logging.getLogger(__name__)

REQUEST_ID_CTX = import_string("gateway.middleware.REQUEST_ID_CTX")
ALREADY_CAPTURED = "ORDER_ALREADY_CAPTURED"


# ---------------- Circuit Breaker ---------------- #

class CircuitBreaker:
    """Minimal circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Transitions:
    - CLOSED → OPEN when failures reach ``fail_threshold``.
    - OPEN → HALF_OPEN after ``reset_timeout`` seconds.
    - HALF_OPEN → CLOSED on a successful probe; stays HALF_OPEN while a
      single probe is in flight; transitions back to OPEN on failure.

    This implementation is thread-safe via an internal lock.
    """

    def __init__(self, name: str, fail_threshold: int, reset_timeout: float):
        self.name = name
        self.fail_threshold = fail_threshold
        self.reset_timeout = reset_timeout
        self._lock = threading.RLock()
        self._failures = 0
        self._state = "CLOSED"  # CLOSED | OPEN | HALF_OPEN
        self._opened_at = 0.0
        self._half_open_probe_in_flight = False

    @property
    def state(self) -> str:
        """Current breaker state with time-based transition handling."""
        with self._lock:
            if self._state == "OPEN" and (time.monotonic() - self._opened_at) >= self.reset_timeout:
                self._state = "HALF_OPEN"
                self._half_open_probe_in_flight = False
            return self._state

    def before_call(self) -> str:
        """Check and update state before a protected call.

        Returns:
            str: The state at call time.

        Raises:
            GatewayUnavailableError: If the circuit is OPEN or a HALF_OPEN
                probe is already in flight.
        """
        with self._lock:
            st = self.state
            if st == "OPEN":
                raise GatewayUnavailableError("CIRCUIT_OPEN")
            if st == "HALF_OPEN":
                if self._half_open_probe_in_flight:
                    raise GatewayUnavailableError("CIRCUIT_HALF_OPEN_BUSY")
                self._half_open_probe_in_flight = True
            return st

    def on_success(self):
        with self._lock:
            self._failures = 0
            self._state = "CLOSED"
            self._half_open_probe_in_flight = False

    def on_failure(self):
        with self._lock:
            self._failures += 1
            if self._state == "HALF_OPEN" or (self._failures >= self.fail_threshold and self._state != "OPEN"):
                if self._state != "OPEN":
                    logger.error("circuit opened", extra={"circuit": self.name, "failures": self._failures})
                self._state = "OPEN"
                self._opened_at = time.monotonic()
                self._half_open_probe_in_flight = False

    def on_finish(self):
        with self._lock:
            if self._state == "HALF_OPEN":
                self._half_open_probe_in_flight = False


_paypal_cb = CircuitBreaker(
    "paypal",
    getattr(settings, "HTTP_CIRCUIT_FAIL_THRESHOLD", 5),
    getattr(settings, "HTTP_CIRCUIT_RESET_TIMEOUT", 30.0),
)


# ---------------- Helpers ---------------- #

def _request_headers(extra: Optional[dict] = None) -> dict:
    """Build base headers including X-Request-ID and any extras."""
    headers: dict[str, str] = {"Accept": "application/json"}
    rid = REQUEST_ID_CTX.get()
    if rid and rid != "-":
        headers["X-Request-ID"] = rid
    if extra:
        headers.update(extra)
    return headers


def _is_success(resp) -> bool:
    return 200 <= resp.status_code < 300


def _json_body(resp) -> dict:
    """Parse a response body as a JSON object or raise GatewayProtocolError."""
    try:
        data = resp.json()
    except ValueError as e:
        raise GatewayProtocolError(f"malformed JSON from provider: {e}")
    if not isinstance(data, dict):
        raise GatewayProtocolError("provider response is not a JSON object")
    return data


def _issues(resp) -> set:
    try:
        data = resp.json()
    except ValueError:
        return set()
    if not isinstance(data, dict):
        return set()
    return {d.get("issue") for d in data.get("details") or [] if isinstance(d, dict)}


def _captured_amount(data: dict):
    """Return (amount, currency) of the first capture, or (None, None) if absent."""
    try:
        unit = data["purchase_units"][0]
        amount = (unit.get("payments") or {}).get("captures", [{}])[0].get("amount") or unit["amount"]
        return money(amount["value"]), amount["currency_code"]
    except (KeyError, IndexError, TypeError, AttributeError, ArithmeticError):
        return None, None


# ---------------- Payment gateway adapter ---------------- #

class PayPalGatewayClient(PaymentGatewayPort):
    """Client for the provider's order-create / order-capture API.

    Args:
        base_url: Provider API root. Defaults to ``settings.PAYPAL_BASE_URL``.
        client_id: OAuth2 client id. Defaults to ``settings.PAYPAL_CLIENT_ID``.
        secret: OAuth2 client secret. Defaults to ``settings.PAYPAL_SECRET``.
        timeout: Per-call timeout in seconds. Defaults to
            ``settings.PAYPAL_TIMEOUT_SECS``.
        breaker: Circuit breaker shared by every call. Defaults to the
            module-level breaker.
    """

    def __init__(
        self,
        base_url: str | None = None,
        client_id: str | None = None,
        secret: str | None = None,
        timeout: float | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or getattr(settings, "PAYPAL_BASE_URL", "https://api-m.sandbox.paypal.com")).rstrip("/")
        self.client_id = client_id if client_id is not None else getattr(settings, "PAYPAL_CLIENT_ID", "")
        self.secret = secret if secret is not None else getattr(settings, "PAYPAL_SECRET", "")
        self.timeout = timeout or getattr(settings, "PAYPAL_TIMEOUT_SECS", 10.0)
        self.breaker = breaker or _paypal_cb
        self.expiry_skew = getattr(settings, "PAYPAL_TOKEN_EXPIRY_SKEW", 60)
        self._token_lock = threading.Lock()
        self._token: Optional[str] = None
        self._token_expires_at = 0.0

    # ---- access token ----

    def acquire_access_token(self) -> str:
        """Return a bearer token, reusing the cached one until it expires.

        Raises:
            GatewayAuthError: Credentials rejected or provider unreachable.
            GatewayProtocolError: Token response without ``access_token``.
        """
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token
            token, expires_in = self._request_token()
            self._token = token
            self._token_expires_at = time.monotonic() + max(0, expires_in - self.expiry_skew)
            return token

    def invalidate_token(self, stale: str):
        """Forget ``stale`` unless another caller already replaced it."""
        with self._token_lock:
            if self._token == stale:
                self._token = None
                self._token_expires_at = 0.0

    def _request_token(self) -> tuple[str, int]:
        self.breaker.before_call()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(
                    f"{self.base_url}/v1/oauth2/token",
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.secret),
                    headers=_request_headers(),
                )
        except httpx.RequestError as e:
            self.breaker.on_failure()
            logger.error("token request failed", extra={"error": repr(e)})
            raise GatewayAuthError(f"provider unreachable: {e!r}")
        finally:
            self.breaker.on_finish()

        if resp.status_code >= 500:
            self.breaker.on_failure()
            raise GatewayAuthError(f"token endpoint returned HTTP {resp.status_code}")
        self.breaker.on_success()
        if not _is_success(resp):
            logger.error("credentials rejected by provider", extra={"status_code": resp.status_code})
            raise GatewayAuthError(f"credentials rejected (HTTP {resp.status_code})")

        data = _json_body(resp)
        token = data.get("access_token")
        if not isinstance(token, str) or not token:
            raise GatewayProtocolError("token response has no access_token")
        try:
            expires_in = int(data.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        return token, expires_in

    # ---- authenticated calls ----

    def _post(self, path: str, token: str, body: dict, extra_headers: Optional[dict] = None):
        headers = _request_headers({"Authorization": f"Bearer {token}", **(extra_headers or {})})
        self.breaker.before_call()
        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(f"{self.base_url}{path}", json=body, headers=headers)
        except httpx.ConnectTimeout as e:
            self.breaker.on_failure()
            raise GatewayUnavailableError(f"connect timeout: {e!r}")
        except httpx.TimeoutException as e:
            self.breaker.on_failure()
            logger.error(
                "provider call timed out; outcome unknown, check the provider before retrying",
                extra={"path": path},
            )
            raise GatewayUnavailableError(f"timeout: {e!r}", outcome_unknown=True)
        except httpx.RequestError as e:
            self.breaker.on_failure()
            raise GatewayUnavailableError(f"transport error: {e!r}")
        finally:
            self.breaker.on_finish()

        if resp.status_code >= 500:
            self.breaker.on_failure()
        else:
            self.breaker.on_success()
        return resp

    def _call(self, path: str, body: dict, extra_headers: Optional[dict] = None):
        """POST with a bearer token, refreshing it once on 401."""
        token = self.acquire_access_token()
        resp = self._post(path, token, body, extra_headers)
        if resp.status_code == 401:
            logger.info("bearer token rejected, refreshing", extra={"path": path})
            self.invalidate_token(token)
            token = self.acquire_access_token()
            resp = self._post(path, token, body, extra_headers)
        return resp

    # ---- orders ----

    def create_order(self, amount: Decimal, currency: str, request_id: Optional[str] = None) -> str:
        """Create a CAPTURE-intent order for ``amount``.

        Args:
            amount: Total to charge.
            currency: ISO currency code.
            request_id: Optional provider idempotency key.

        Returns:
            str: The provider order id.

        Raises:
            GatewayUnavailableError: Non-2xx response or transport failure.
            GatewayProtocolError: Body without an ``id``.
        """
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {"amount": {"currency_code": currency, "value": f"{money(amount):.2f}"}},
            ],
        }
        extra = {"PayPal-Request-Id": request_id} if request_id else None
        resp = self._call("/v2/checkout/orders", body, extra)
        if not _is_success(resp):
            logger.warning("create order rejected", extra={"status_code": resp.status_code})
            raise GatewayUnavailableError(f"create order failed with HTTP {resp.status_code}", status_code=resp.status_code)

        data = _json_body(resp)
        gateway_order_id = data.get("id")
        if not isinstance(gateway_order_id, str) or not gateway_order_id:
            raise GatewayProtocolError("create order response has no id")
        return gateway_order_id

    def capture_order(self, gateway_order_id: str) -> CaptureResult:
        """Capture a payer-approved order.

        A 422 with issue ``ORDER_ALREADY_CAPTURED`` means an earlier capture
        went through; it is reported as COMPLETED.

        Raises:
            GatewayUnavailableError: Non-2xx response or transport failure.
            GatewayProtocolError: Body without a known ``status``.
        """
        path = f"/v2/checkout/orders/{quote(gateway_order_id, safe='')}/capture"
        resp = self._call(path, {})

        if resp.status_code == 422 and ALREADY_CAPTURED in _issues(resp):
            logger.info("order already captured", extra={"gateway_order_id": gateway_order_id})
            return CaptureResult(GatewayOrderStatus.COMPLETED, {"id": gateway_order_id, "status": "COMPLETED", "issue": ALREADY_CAPTURED})
        if not _is_success(resp):
            logger.warning("capture rejected", extra={"gateway_order_id": gateway_order_id, "status_code": resp.status_code})
            raise GatewayUnavailableError(f"capture failed with HTTP {resp.status_code}", status_code=resp.status_code)

        data = _json_body(resp)
        try:
            status = GatewayOrderStatus(data.get("status"))
        except ValueError:
            raise GatewayProtocolError(f"capture response has unknown status {data.get('status')!r}")
        if status != GatewayOrderStatus.COMPLETED:
            return CaptureResult(status, data)
        amount, currency = _captured_amount(data)
        return CaptureResult(status, data, amount, currency)
