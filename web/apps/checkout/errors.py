"""Exceptions raised by the checkout domain and its adapters.

Every exception carries a short machine-readable ``code`` that the HTTP
views map to a status code and return as ``{"detail": code}``.
"""

from typing import List, Optional


class CheckoutError(Exception):
    """Base class for all checkout failures.

    Attributes:
        code: Machine-readable error code.
        message: Human-readable description.
    """

    code = "CHECKOUT_ERROR"

    def __init__(self, message: str = "", code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message or self.code
        super().__init__(self.message)


class ValidationError(CheckoutError):
    """Caller input defect. Lists every violated constraint at once."""

    code = "VALIDATION_ERROR"

    def __init__(self, violations: List[str]):
        self.violations = list(violations)
        super().__init__("; ".join(self.violations))


# ---- Gateway ----

class GatewayError(CheckoutError):
    """Base class for failures talking to the payment provider."""

    code = "GATEWAY_ERROR"


class GatewayAuthError(GatewayError):
    """Credentials rejected or provider unreachable while authenticating."""

    code = "GATEWAY_AUTH_ERROR"


class GatewayUnavailableError(GatewayError):
    """Non-2xx response, transport failure or timeout.

    ``outcome_unknown`` is True when the request may have been executed by
    the provider (read timeout), so an operator has to check the provider
    before assuming the payment did not happen.
    """

    code = "GATEWAY_UNAVAILABLE"

    def __init__(self, message: str = "", status_code: Optional[int] = None, outcome_unknown: bool = False):
        self.status_code = status_code
        self.outcome_unknown = outcome_unknown
        super().__init__(message)


class GatewayProtocolError(GatewayError):
    """The provider answered 2xx but the body is malformed or incomplete."""

    code = "GATEWAY_PROTOCOL_ERROR"


# ---- Business outcomes ----

class PaymentNotCompletedError(CheckoutError):
    """Capture returned a status other than COMPLETED. Not retryable."""

    code = "PAYMENT_NOT_COMPLETED"

    def __init__(self, gateway_order_id: str, status: str):
        self.gateway_order_id = gateway_order_id
        self.status = status
        super().__init__(f"gateway order {gateway_order_id} ended in status {status}")


class PaymentCapturedButNotRecordedError(CheckoutError):
    """Money moved at the provider but the order could not be stored.

    Requires manual reconciliation.
    """

    code = "PAYMENT_CAPTURED_NOT_RECORDED"

    def __init__(self, gateway_order_id: str, cause: Optional[BaseException] = None):
        self.gateway_order_id = gateway_order_id
        self.cause = cause
        super().__init__(f"gateway order {gateway_order_id} captured but not recorded: {cause!r}")


# ---- Store ----

class DuplicateOrderError(CheckoutError):
    """An order already exists for the gateway order id."""

    code = "DUPLICATE_ORDER"

    def __init__(self, gateway_order_id: str, existing_id: Optional[int] = None):
        self.gateway_order_id = gateway_order_id
        self.existing_id = existing_id
        super().__init__(f"order already recorded for gateway order {gateway_order_id}")


class OrderNotFoundError(CheckoutError):
    code = "NOT_FOUND"
