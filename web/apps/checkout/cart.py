"""Client-held cart token codec and cart resolution.

The cart lives in a cookie as base64-encoded JSON mapping product ids to
quantities, e.g. ``{"42": 2, "7": 1}``. Prices are never stored in the
token: every resolution reads them from the catalog so a tampered cookie
cannot change what the shopper pays.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Tuple

from .domain import CartLineItem, CatalogPort, money, subtotal

logger = logging.getLogger(__name__)


@dataclass
class ResolvedCart:
    """Result of resolving a cart token against the catalog.

    Attributes:
        items: Priced line items, in token order.
        dropped: Product ids present in the token but missing from the
            catalog.
        invalid: True when the token could not be decoded and the caller
            should clear the cookie.
    """

    items: List[CartLineItem] = field(default_factory=list)
    dropped: List[int] = field(default_factory=list)
    invalid: bool = False

    @property
    def subtotal(self) -> Decimal:
        return subtotal(self.items)

    def total(self, shipping_fee) -> Decimal:
        return money(self.subtotal + money(shipping_fee))

    @property
    def size(self) -> int:
        return sum(i.quantity for i in self.items)


def decode_cart_token(token: str | None) -> Tuple[Dict[int, int], bool]:
    """Decode a cart token into ``{product_id: quantity}``.

    Args:
        token: Raw cookie value; may be None or empty.

    Returns:
        tuple[dict, bool]: The decoded map and whether the token was
        malformed. Malformed tokens decode to an empty map.
    """
    if not token:
        return {}, False
    try:
        raw = json.loads(base64.b64decode(token.encode("ascii"), validate=True).decode("utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("cart token is not an object")
        cart: Dict[int, int] = {}
        for key, qty in raw.items():
            if isinstance(qty, bool) or not isinstance(qty, int):
                raise ValueError("quantity must be an integer")
            cart[int(key)] = qty
        return cart, False
    except (binascii.Error, UnicodeError, ValueError, TypeError) as e:
        logger.info("discarding malformed cart token", extra={"reason": str(e)})
        return {}, True


def encode_cart_token(cart: Dict[int, int]) -> str:
    """Encode ``{product_id: quantity}`` into a cart token."""
    body = json.dumps({str(k): v for k, v in cart.items()}, separators=(",", ":"))
    return base64.b64encode(body.encode("utf-8")).decode("ascii")


def cart_size(cart: Dict[int, int]) -> int:
    return sum(q for q in cart.values() if q > 0)


def add_to_cart(cart: Dict[int, int], product_id: int, quantity: int = 1) -> Dict[int, int]:
    """Return a copy of ``cart`` with ``quantity`` more units of a product.

    A line whose quantity drops to zero or below is removed.
    """
    out = dict(cart)
    out[product_id] = out.get(product_id, 0) + quantity
    if out[product_id] <= 0:
        del out[product_id]
    return out


def remove_from_cart(cart: Dict[int, int], product_id: int) -> Dict[int, int]:
    out = dict(cart)
    out.pop(product_id, None)
    return out


def resolve_cart(token: str | None, catalog: CatalogPort) -> ResolvedCart:
    """Resolve a cart token into priced line items.

    Lines with a non-positive quantity are skipped. Products the catalog
    does not know are dropped and reported in ``ResolvedCart.dropped``.

    Args:
        token: Raw cart token.
        catalog: Price lookup.

    Returns:
        ResolvedCart: Items, dropped ids and the malformed-token flag.
    """
    cart, invalid = decode_cart_token(token)
    resolved = ResolvedCart(invalid=invalid)
    for product_id, quantity in cart.items():
        if quantity <= 0:
            continue
        price = catalog.get_product_price(product_id)
        if price is None:
            resolved.dropped.append(product_id)
            continue
        resolved.items.append(CartLineItem(product_id=product_id, unit_price=money(price), quantity=quantity))
    if resolved.dropped:
        logger.warning("cart references unknown products", extra={"product_ids": resolved.dropped})
    return resolved
