"""Signed, expiring tokens that carry a CheckoutSession between requests.

The session is serialized to JSON and signed with Django's ``signing``
module, so the shopper holds it but cannot alter the snapshot, the address
or the totals.
"""

from datetime import datetime
from decimal import Decimal

from django.conf import settings
from django.core import signing

from .domain import CartLineItem, CheckoutSession, PaymentMethod
from .errors import ValidationError

SALT = "checkout.session"


def dump_session(session: CheckoutSession) -> str:
    payload = {
        "sid": session.session_id,
        "cid": session.client_id,
        "addr": session.delivery_address,
        "pm": session.payment_method.value,
        "items": [[i.product_id, str(i.unit_price), i.quantity] for i in session.items],
        "ship": str(session.shipping_fee),
        "cur": session.currency,
        "at": session.created_at.isoformat(),
    }
    return signing.dumps(payload, salt=SALT, compress=True)


def load_session(token: str, max_age: int | None = None) -> CheckoutSession:
    """Verify and decode a session token.

    Raises:
        ValidationError: If the token is missing, tampered with or older
            than ``CHECKOUT_SESSION_MAX_AGE`` seconds.
    """
    if not token:
        raise ValidationError(["missing checkout session"])
    if max_age is None:
        max_age = getattr(settings, "CHECKOUT_SESSION_MAX_AGE", 1800)
    try:
        p = signing.loads(token, salt=SALT, max_age=max_age)
    except signing.SignatureExpired:
        raise ValidationError(["checkout session expired"])
    except signing.BadSignature:
        raise ValidationError(["invalid checkout session"])

    return CheckoutSession(
        session_id=p["sid"],
        client_id=p["cid"],
        delivery_address=p["addr"],
        payment_method=PaymentMethod(p["pm"]),
        items=tuple(CartLineItem(int(pid), Decimal(price), int(qty)) for pid, price, qty in p["items"]),
        shipping_fee=Decimal(p["ship"]),
        currency=p["cur"],
        created_at=datetime.fromisoformat(p["at"]),
    )
