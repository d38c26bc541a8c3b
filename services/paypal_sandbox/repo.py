"""SQLAlchemy repository for the payment provider sandbox.

Stores the provider-side orders and issued access tokens. The database URL
is read from ``SANDBOX_DATABASE_URL`` and defaults to a local SQLite file so
the sandbox runs without any other service.
"""

import os
import secrets
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

from sqlalchemy import DateTime, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Session, mapped_column

DATABASE_URL = os.getenv("SANDBOX_DATABASE_URL", "sqlite:///./paypal_sandbox.db")

CREATED = "CREATED"
APPROVED = "APPROVED"
COMPLETED = "COMPLETED"
VOIDED = "VOIDED"


def make_engine(url: str = DATABASE_URL, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    return create_engine(url, pool_pre_ping=True, **kwargs)


class Base(DeclarativeBase):
    pass


def _now():
    return datetime.now(timezone.utc)


class SandboxOrder(Base):
    """Provider-side order.

    Attributes:
        id: Public order id handed to the storefront.
        status: CREATED, APPROVED, COMPLETED or VOIDED.
        currency: ISO currency code.
        value: Amount as the decimal string received on creation.
        request_id: ``PayPal-Request-Id`` used on creation, if any.
        capture_id: Id of the capture once COMPLETED.
    """

    __tablename__ = "sandbox_orders"

    id = mapped_column(String(32), primary_key=True)
    status = mapped_column(String(16), nullable=False, default=CREATED)
    currency = mapped_column(String(3), nullable=False)
    value = mapped_column(String(32), nullable=False)
    request_id = mapped_column(String(128), unique=True, nullable=True)
    capture_id = mapped_column(String(32), nullable=True)
    created_at = mapped_column(DateTime(timezone=True), default=_now)

    def to_dict(self) -> dict:
        body = {
            "id": self.id,
            "intent": "CAPTURE",
            "status": self.status,
            "purchase_units": [{"amount": {"currency_code": self.currency, "value": self.value}}],
        }
        if self.capture_id:
            body["purchase_units"][0]["payments"] = {
                "captures": [
                    {
                        "id": self.capture_id,
                        "status": COMPLETED,
                        "amount": {"currency_code": self.currency, "value": self.value},
                    }
                ]
            }
        return body


class AccessToken(Base):
    __tablename__ = "sandbox_tokens"

    token = mapped_column(String(64), primary_key=True)
    expires_at = mapped_column(DateTime(timezone=True), nullable=False)


class SandboxRepo:
    """Repository for sandbox orders and tokens bound to one engine."""

    def __init__(self, engine: Engine):
        self.engine = engine
        Base.metadata.create_all(engine)

    @contextmanager
    def session(self):
        """Yield a session bound to the repository engine; closed on exit."""
        with Session(self.engine) as s:
            yield s

    # ---- tokens ----

    def issue_token(self, ttl_seconds: int) -> str:
        token = "A21AA" + secrets.token_urlsafe(32)
        with self.session() as s:
            s.add(AccessToken(token=token, expires_at=_now() + timedelta(seconds=ttl_seconds)))
            s.commit()
        return token

    def token_valid(self, token: str) -> bool:
        with self.session() as s:
            rec = s.get(AccessToken, token)
            if rec is None:
                return False
            expires_at = rec.expires_at
            # SQLite drops tzinfo
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            return expires_at > _now()

    # ---- orders ----

    def create_order(self, value: str, currency: str, request_id: Optional[str] = None) -> Tuple[dict, bool]:
        """Create an order, or return the one created with the same request id.

        Returns:
            tuple[dict, bool]: The order body and whether it was created now.
        """
        with self.session() as s:
            if request_id:
                found = s.execute(select(SandboxOrder).where(SandboxOrder.request_id == request_id)).scalars().first()
                if found:
                    return found.to_dict(), False
            order = SandboxOrder(
                id=uuid.uuid4().hex[:17].upper(),
                status=CREATED,
                currency=currency,
                value=value,
                request_id=request_id,
            )
            s.add(order)
            try:
                s.commit()
            except IntegrityError:
                s.rollback()
                found = s.execute(select(SandboxOrder).where(SandboxOrder.request_id == request_id)).scalars().one()
                return found.to_dict(), False
            return order.to_dict(), True

    def get_order(self, order_id: str) -> Optional[dict]:
        with self.session() as s:
            order = s.get(SandboxOrder, order_id)
            return order.to_dict() if order else None

    def transition(self, order_id: str, allowed_from: tuple, to: str) -> Tuple[Optional[dict], Optional[str]]:
        """Move an order to ``to`` if its current status is in ``allowed_from``.

        Returns:
            tuple[dict | None, str | None]: The order body (None when the
            order does not exist) and the status it was in when the move was
            refused (None on success).
        """
        with self.session() as s:
            order = s.execute(select(SandboxOrder).where(SandboxOrder.id == order_id).with_for_update()).scalars().first()
            if order is None:
                return None, None
            if order.status not in allowed_from:
                return order.to_dict(), order.status
            order.status = to
            if to == COMPLETED:
                order.capture_id = uuid.uuid4().hex[:17].upper()
            s.commit()
            return order.to_dict(), None
