"""Unit tests for the payment provider HTTP client.

These tests verify token caching, the single 401 refresh, error mapping
and the circuit breaker by monkeypatching ``httpx.Client.post`` and
routing calls by URL.
"""

from decimal import Decimal

import httpx
import pytest

from apps.checkout.domain import GatewayOrderStatus
from apps.checkout.errors import GatewayAuthError, GatewayProtocolError, GatewayUnavailableError
from apps.checkout.http_adapters import REQUEST_ID_CTX, CircuitBreaker, PayPalGatewayClient

BASE = "http://paypal.test"
TOKEN_URL = f"{BASE}/v1/oauth2/token"
ORDERS_URL = f"{BASE}/v2/checkout/orders"


class DummyResp:
    """Minimal httpx-like response stub for adapter tests.

    Args:
        status_code (int): HTTP status code to simulate.
        json_data (dict | list | None): JSON body; ``None`` makes ``json()``
            raise like a non-JSON body.
    """

    def __init__(self, status_code=200, json_data=None):
        self.status_code = status_code
        self._json = json_data

    def json(self):
        if self._json is None:
            raise ValueError("Expecting value")
        return self._json


def token_ok(token="tok-1", expires_in=32400):
    return DummyResp(200, {"access_token": token, "token_type": "Bearer", "expires_in": expires_in})


def install(monkeypatch, routes):
    """Patch ``httpx.Client.post``; ``routes`` maps URL to a list of responses.

    Responses are consumed in order; an exception instance is raised. Every
    call is recorded as ``(url, kwargs)``.
    """
    calls = []

    def fake_post(self, url, **kw):
        calls.append((url, kw))
        queue = routes[url]
        resp = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(resp, Exception):
            raise resp
        return resp

    monkeypatch.setattr(httpx.Client, "post", fake_post, raising=True)
    return calls


def make_client(**kw):
    kw.setdefault("breaker", CircuitBreaker("test", 5, 60.0))
    return PayPalGatewayClient(base_url=BASE, client_id="cid", secret="sec", timeout=1.0, **kw)


def urls(calls):
    return [u for u, _ in calls]


# ---- access token ----

def test_token_is_requested_with_basic_auth_and_cached(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()]})
    client = make_client()
    assert client.acquire_access_token() == "tok-1"
    assert client.acquire_access_token() == "tok-1"
    assert urls(calls) == [TOKEN_URL]
    _, kw = calls[0]
    assert kw["auth"] == ("cid", "sec")
    assert kw["data"] == {"grant_type": "client_credentials"}


def test_token_close_to_expiry_is_refreshed(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok("tok-1", expires_in=30), token_ok("tok-2")]})
    client = make_client()
    assert client.acquire_access_token() == "tok-1"
    assert client.acquire_access_token() == "tok-2"
    assert len(calls) == 2


def test_bad_credentials_raise_auth_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [DummyResp(401, {"error": "invalid_client"})]})
    with pytest.raises(GatewayAuthError):
        make_client().acquire_access_token()


def test_unreachable_token_endpoint_raises_auth_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [httpx.ConnectError("refused")]})
    with pytest.raises(GatewayAuthError):
        make_client().acquire_access_token()


def test_token_without_access_token_is_protocol_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [DummyResp(200, {"token_type": "Bearer"})]})
    with pytest.raises(GatewayProtocolError):
        make_client().acquire_access_token()


# ---- create order ----

def test_create_order_sends_amount_and_request_id(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(201, {"id": "5O190127TN364715T", "status": "CREATED"})]})
    rid = REQUEST_ID_CTX.set("req-42")
    try:
        oid = make_client().create_order(Decimal("49.97"), "USD", request_id="session-1")
    finally:
        REQUEST_ID_CTX.reset(rid)

    assert oid == "5O190127TN364715T"
    url, kw = calls[-1]
    assert url == ORDERS_URL
    assert kw["json"] == {
        "intent": "CAPTURE",
        "purchase_units": [{"amount": {"currency_code": "USD", "value": "49.97"}}],
    }
    assert kw["headers"]["Authorization"] == "Bearer tok-1"
    assert kw["headers"]["PayPal-Request-Id"] == "session-1"
    assert kw["headers"]["X-Request-ID"] == "req-42"


def test_create_order_formats_value_with_two_decimals(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(201, {"id": "X1"})]})
    make_client().create_order(Decimal("10"), "USD")
    assert calls[-1][1]["json"]["purchase_units"][0]["amount"]["value"] == "10.00"
    assert "PayPal-Request-Id" not in calls[-1][1]["headers"]


def test_create_order_refreshes_token_once_on_401(monkeypatch):
    calls = install(
        monkeypatch,
        {
            TOKEN_URL: [token_ok("tok-1"), token_ok("tok-2")],
            ORDERS_URL: [DummyResp(401, {"error": "invalid_token"}), DummyResp(201, {"id": "X1"})],
        },
    )
    assert make_client().create_order(Decimal("1.00"), "USD") == "X1"
    assert urls(calls) == [TOKEN_URL, ORDERS_URL, TOKEN_URL, ORDERS_URL]
    assert calls[-1][1]["headers"]["Authorization"] == "Bearer tok-2"


def test_create_order_server_error_is_unavailable(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(500, {"name": "INTERNAL_SERVER_ERROR"})]})
    with pytest.raises(GatewayUnavailableError) as e:
        make_client().create_order(Decimal("1.00"), "USD")
    assert e.value.status_code == 500
    assert e.value.outcome_unknown is False
    # no automatic retry
    assert urls(calls).count(ORDERS_URL) == 1


def test_create_order_without_id_is_protocol_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(201, {"status": "CREATED"})]})
    with pytest.raises(GatewayProtocolError):
        make_client().create_order(Decimal("1.00"), "USD")


def test_create_order_malformed_json_is_protocol_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(201, None)]})
    with pytest.raises(GatewayProtocolError):
        make_client().create_order(Decimal("1.00"), "USD")


# ---- capture ----

def capture_url(oid):
    return f"{ORDERS_URL}/{oid}/capture"


def test_capture_completed(monkeypatch):
    body = {"id": "X1", "status": "COMPLETED", "purchase_units": []}
    install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [DummyResp(201, body)]})
    result = make_client().capture_order("X1")
    assert result.status == GatewayOrderStatus.COMPLETED
    assert result.completed
    assert result.raw == body
    assert result.amount is None


def test_capture_reports_captured_amount(monkeypatch):
    body = {
        "id": "X1",
        "status": "COMPLETED",
        "purchase_units": [
            {
                "amount": {"currency_code": "USD", "value": "49.97"},
                "payments": {"captures": [{"id": "C1", "status": "COMPLETED", "amount": {"currency_code": "USD", "value": "49.97"}}]},
            }
        ],
    }
    install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [DummyResp(201, body)]})
    result = make_client().capture_order("X1")
    assert result.amount == Decimal("49.97")
    assert result.currency == "USD"


def test_capture_voided_is_reported_not_raised(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [DummyResp(200, {"id": "X1", "status": "VOIDED"})]})
    result = make_client().capture_order("X1")
    assert result.status == GatewayOrderStatus.VOIDED
    assert not result.completed


def test_capture_already_captured_counts_as_completed(monkeypatch):
    install(
        monkeypatch,
        {
            TOKEN_URL: [token_ok()],
            capture_url("X1"): [DummyResp(422, {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_ALREADY_CAPTURED"}]})],
        },
    )
    assert make_client().capture_order("X1").status == GatewayOrderStatus.COMPLETED


def test_capture_not_approved_is_unavailable(monkeypatch):
    install(
        monkeypatch,
        {
            TOKEN_URL: [token_ok()],
            capture_url("X1"): [DummyResp(422, {"name": "UNPROCESSABLE_ENTITY", "details": [{"issue": "ORDER_NOT_APPROVED"}]})],
        },
    )
    with pytest.raises(GatewayUnavailableError) as e:
        make_client().capture_order("X1")
    assert e.value.status_code == 422


def test_capture_unknown_status_is_protocol_error(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [DummyResp(201, {"id": "X1", "status": "WEIRD"})]})
    with pytest.raises(GatewayProtocolError):
        make_client().capture_order("X1")


def test_capture_read_timeout_marks_outcome_unknown(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [httpx.ReadTimeout("slow")]})
    with pytest.raises(GatewayUnavailableError) as e:
        make_client().capture_order("X1")
    assert e.value.outcome_unknown is True
    assert urls(calls).count(capture_url("X1")) == 1


def test_capture_connect_timeout_is_not_outcome_unknown(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("X1"): [httpx.ConnectTimeout("no route")]})
    with pytest.raises(GatewayUnavailableError) as e:
        make_client().capture_order("X1")
    assert e.value.outcome_unknown is False


def test_capture_quotes_order_id(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], capture_url("a%2Fb"): [DummyResp(201, {"status": "COMPLETED"})]})
    make_client().capture_order("a/b")
    assert calls[-1][0] == capture_url("a%2Fb")


# ---- circuit breaker ----

def test_circuit_opens_after_repeated_failures(monkeypatch):
    calls = install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(503, {})]})
    client = make_client(breaker=CircuitBreaker("test", 2, 60.0))
    for _ in range(2):
        with pytest.raises(GatewayUnavailableError):
            client.create_order(Decimal("1.00"), "USD")
    assert client.breaker.state == "OPEN"

    sent = len(calls)
    with pytest.raises(GatewayUnavailableError) as e:
        client.create_order(Decimal("1.00"), "USD")
    assert str(e.value) == "CIRCUIT_OPEN"
    assert len(calls) == sent


def test_circuit_half_open_probe_closes_on_success(monkeypatch):
    install(monkeypatch, {TOKEN_URL: [token_ok()], ORDERS_URL: [DummyResp(201, {"id": "X1"})]})
    breaker = CircuitBreaker("test", 1, 0.0)
    breaker.on_failure()
    assert breaker.state == "HALF_OPEN"
    assert make_client(breaker=breaker).create_order(Decimal("1.00"), "USD") == "X1"
    assert breaker.state == "CLOSED"
