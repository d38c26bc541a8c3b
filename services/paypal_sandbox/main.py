"""Payment provider sandbox built with FastAPI.

Emulates the subset of the provider's REST API the storefront uses, so the
checkout flow can run end to end without provider credentials:

- ``POST /v1/oauth2/token``: client-credentials token (HTTP basic auth).
- ``POST /v2/checkout/orders``: create a CAPTURE order; ``PayPal-Request-Id``
  makes creation idempotent.
- ``GET /v2/checkout/orders/{id}``: read an order.
- ``POST /v2/checkout/orders/{id}/capture``: capture an APPROVED order.
  Capturing a COMPLETED order answers 422 ``ORDER_ALREADY_CAPTURED``, a
  CREATED one 422 ``ORDER_NOT_APPROVED``; a VOIDED order is reported with
  status ``VOIDED``.
- ``POST /v2/checkout/orders/{id}/approve`` and ``/void``: stand-ins for the
  payer approving in the browser and for the order expiring.
"""

import logging
import os
import secrets
import uuid
from typing import Annotated, List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from pydantic import BaseModel, Field, constr
from pythonjsonlogger import jsonlogger

from .repo import APPROVED, COMPLETED, CREATED, VOIDED, SandboxRepo, make_engine

CLIENT_ID = os.getenv("SANDBOX_CLIENT_ID", "sandbox-client")
CLIENT_SECRET = os.getenv("SANDBOX_SECRET", "sandbox-secret")
TOKEN_TTL = int(os.getenv("SANDBOX_TOKEN_TTL", "32400"))

app = FastAPI(title="Payment Provider Sandbox")

logger = logging.getLogger("paypal_sandbox")
if not logger.handlers:
    h = logging.StreamHandler()
    h.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s"))
    logger.addHandler(h)
    logger.setLevel(logging.INFO)

_basic = HTTPBasic(auto_error=False)
_repo: Optional[SandboxRepo] = None


def get_repo() -> SandboxRepo:
    global _repo
    if _repo is None:
        _repo = SandboxRepo(make_engine())
    return _repo


def _error(status_code: int, name: str, issue: str, message: str = "") -> JSONResponse:
    """Provider-style error body: ``{name, message, details: [{issue}]}``."""
    return JSONResponse(
        {"name": name, "message": message or name, "debug_id": uuid.uuid4().hex[:13], "details": [{"issue": issue}]},
        status_code=status_code,
    )


def _bearer_ok(authorization: Optional[str], repo: SandboxRepo) -> bool:
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return repo.token_valid(authorization[len("Bearer "):])


def _auth_failed() -> JSONResponse:
    return JSONResponse(
        {"error": "invalid_token", "error_description": "Token signature verification failed"},
        status_code=401,
    )


class Amount(BaseModel):
    currency_code: constr(pattern=r"^[A-Z]{3}$")
    value: constr(pattern=r"^\d{1,10}(\.\d{1,2})?$")


class PurchaseUnit(BaseModel):
    amount: Amount


class CreateOrderRequest(BaseModel):
    """Request body for order creation.

    Attributes:
        intent: Only ``CAPTURE`` is supported.
        purchase_units: Exactly one purchase unit with its amount.
    """

    intent: constr(pattern=r"^CAPTURE$")
    purchase_units: List[PurchaseUnit] = Field(min_length=1, max_length=1)


@app.get("/health")
def health():
    return {"ok": True}


@app.post("/v1/oauth2/token")
async def token(
    request: Request,
    credentials: Annotated[Optional[HTTPBasicCredentials], Depends(_basic)],
    repo: Annotated[SandboxRepo, Depends(get_repo)],
):
    """Issue a bearer token for valid client credentials.

    Returns:
        JSONResponse: 200 with ``access_token`` and ``expires_in``; 401 for
        bad credentials; 400 for an unsupported grant type.
    """
    if (
        credentials is None
        or not secrets.compare_digest(credentials.username, CLIENT_ID)
        or not secrets.compare_digest(credentials.password, CLIENT_SECRET)
    ):
        return JSONResponse({"error": "invalid_client", "error_description": "Client Authentication failed"}, status_code=401)

    form = (await request.body()).decode("utf-8")
    if "grant_type=client_credentials" not in form.split("&"):
        return JSONResponse({"error": "unsupported_grant_type"}, status_code=400)

    return {
        "scope": "https://uri.paypal.com/services/payments/payment",
        "access_token": repo.issue_token(TOKEN_TTL),
        "token_type": "Bearer",
        "app_id": "APP-SANDBOX",
        "expires_in": TOKEN_TTL,
        "nonce": uuid.uuid4().hex,
    }


@app.post("/v2/checkout/orders")
def create_order(
    req: CreateOrderRequest,
    repo: Annotated[SandboxRepo, Depends(get_repo)],
    authorization: Annotated[Optional[str], Header()] = None,
    paypal_request_id: Annotated[Optional[str], Header(alias="PayPal-Request-Id")] = None,
):
    """Create an order in status CREATED.

    A repeated ``PayPal-Request-Id`` returns the order created the first
    time with HTTP 200 instead of 201.
    """
    if not _bearer_ok(authorization, repo):
        return _auth_failed()
    amount = req.purchase_units[0].amount
    body, created = repo.create_order(amount.value, amount.currency_code, paypal_request_id)
    body["links"] = [
        {"href": f"/v2/checkout/orders/{body['id']}/approve", "rel": "approve", "method": "POST"},
        {"href": f"/v2/checkout/orders/{body['id']}/capture", "rel": "capture", "method": "POST"},
    ]
    return JSONResponse(body, status_code=201 if created else 200)


@app.get("/v2/checkout/orders/{order_id}")
def get_order(
    order_id: str,
    repo: Annotated[SandboxRepo, Depends(get_repo)],
    authorization: Annotated[Optional[str], Header()] = None,
):
    if not _bearer_ok(authorization, repo):
        return _auth_failed()
    body = repo.get_order(order_id)
    if body is None:
        return _error(404, "RESOURCE_NOT_FOUND", "INVALID_RESOURCE_ID")
    return body


@app.post("/v2/checkout/orders/{order_id}/approve")
def approve_order(order_id: str, repo: Annotated[SandboxRepo, Depends(get_repo)]):
    """Simulate the payer approving the order."""
    body, refused = repo.transition(order_id, (CREATED,), APPROVED)
    if body is None:
        return _error(404, "RESOURCE_NOT_FOUND", "INVALID_RESOURCE_ID")
    if refused:
        return _error(422, "UNPROCESSABLE_ENTITY", "ORDER_CANNOT_BE_APPROVED", f"order is {refused}")
    return body


@app.post("/v2/checkout/orders/{order_id}/void")
def void_order(order_id: str, repo: Annotated[SandboxRepo, Depends(get_repo)]):
    """Simulate the order expiring or being cancelled before capture."""
    body, refused = repo.transition(order_id, (CREATED, APPROVED), VOIDED)
    if body is None:
        return _error(404, "RESOURCE_NOT_FOUND", "INVALID_RESOURCE_ID")
    if refused:
        return _error(422, "UNPROCESSABLE_ENTITY", "ORDER_CANNOT_BE_VOIDED", f"order is {refused}")
    return body


@app.post("/v2/checkout/orders/{order_id}/capture")
def capture_order(
    order_id: str,
    repo: Annotated[SandboxRepo, Depends(get_repo)],
    authorization: Annotated[Optional[str], Header()] = None,
):
    """Capture an APPROVED order.

    Returns:
        JSONResponse: 201 with status COMPLETED; 200 with status VOIDED for
        a voided order; 422 ``ORDER_ALREADY_CAPTURED`` or
        ``ORDER_NOT_APPROVED``; 404 for an unknown id; 401 without a valid
        token.
    """
    if not _bearer_ok(authorization, repo):
        return _auth_failed()
    body, refused = repo.transition(order_id, (APPROVED,), COMPLETED)
    if body is None:
        return _error(404, "RESOURCE_NOT_FOUND", "INVALID_RESOURCE_ID")
    if refused == COMPLETED:
        return _error(422, "UNPROCESSABLE_ENTITY", "ORDER_ALREADY_CAPTURED", "Order already captured.")
    if refused == CREATED:
        return _error(422, "UNPROCESSABLE_ENTITY", "ORDER_NOT_APPROVED", "Payer has not yet approved the Order for payment.")
    if refused == VOIDED:
        return JSONResponse(body, status_code=200)
    logger.info("order captured", extra={"order_id": order_id})
    return JSONResponse(body, status_code=201)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = rid
    try:
        response = await call_next(request)
    finally:
        logger.info("request handled", extra={"request_id": rid, "path": request.url.path, "method": request.method})
    response.headers["X-Request-ID"] = rid
    return response
