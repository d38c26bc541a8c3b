"""Idempotency records for gateway order creation.

The provider does not de-duplicate two create-order calls for the same
amount, so the storefront does it per checkout session: the first request
for a session creates a record; once the provider answers, the response is
stored so a double-submitted request returns the same gateway order id
instead of opening a second one. Failed attempts are not stored, which
keeps the session usable for a retry.
"""

import hashlib
import json
import logging
from datetime import timedelta
from typing import Optional

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from .models import IdempotencyKey

logger = logging.getLogger(__name__)


def _hash(payload: dict) -> str:
    """Compute a stable SHA-256 hash for a JSON-serializable payload.

    The payload is serialized with sorted keys and compact separators to
    ensure a deterministic representation before hashing.
    """
    body = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


@transaction.atomic
def get_or_create_idempotent(key: str, payload: dict, stale_after: float | None = None):
    """Get-or-create an idempotency record for the given key and payload.

    Behavior:
        - New key: create a record and return ``(False, rec)``.
        - Known key, same payload: lock the row and return ``(True, rec)``.
        - Known key, in flight for longer than ``stale_after`` seconds (its
          worker died): take the record over and return ``(False, rec)``.
        - Known key, different payload: raise
          ``ValueError("IDEMPOTENCY_CONFLICT")``.

    The create path runs in a nested savepoint so an IntegrityError only
    rolls back that block; the existing-record path takes a row lock
    (SELECT ... FOR UPDATE).

    Args:
        key: Checkout session id.
        payload: Request payload used to compute the request hash.
        stale_after: Seconds after which an unanswered record is taken
            over. Defaults to ``settings.PAYPAL_TIMEOUT_SECS``.

    Returns:
        tuple[bool, IdempotencyKey]: ``(existing, rec)``.
    """
    h = _hash(payload)
    if stale_after is None:
        stale_after = getattr(settings, "PAYPAL_TIMEOUT_SECS", 10.0)

    try:
        with transaction.atomic():
            rec = IdempotencyKey.objects.create(key=key, request_hash=h, response_status=0, response_body={})
            return False, rec
    except IntegrityError:
        rec = IdempotencyKey.objects.select_for_update().get(key=key)
        if rec.request_hash != h:
            raise ValueError("IDEMPOTENCY_CONFLICT")
        if not rec.response_status and rec.created_at < timezone.now() - timedelta(seconds=stale_after):
            # The provider de-duplicates on the session id, so asking again is safe
            logger.warning("taking over stale idempotency record", extra={"checkout_session": key})
            rec.created_at = timezone.now()
            rec.save(update_fields=["created_at"])
            return False, rec
        return True, rec


def bound_gateway_order(key: str) -> Optional[str]:
    """Return the gateway order id opened for a checkout session, if any."""
    return (
        IdempotencyKey.objects.filter(key=key, gateway_order_id__isnull=False)
        .values_list("gateway_order_id", flat=True)
        .first()
    )


def finalize(rec: IdempotencyKey, status_code: int, body: dict, gateway_order_id=None):
    """Store the response so later retries for the same session replay it."""
    rec.response_status = status_code
    rec.response_body = body
    if gateway_order_id is not None:
        rec.gateway_order_id = gateway_order_id
    rec.save(update_fields=["response_status", "response_body", "gateway_order_id"])


def release(rec: IdempotencyKey):
    """Drop a record whose request failed so the session can be retried."""
    IdempotencyKey.objects.filter(pk=rec.pk, response_status=0).delete()
