"""Shared fixtures: in-memory ledger database, settings and event builders."""

import hashlib
import hmac
import json
import time
from collections.abc import Callable, Generator
from decimal import Decimal
from typing import Any

import pytest

from services.ledger.database import Database
from services.ledger.models import OrderRecord
from services.shared.config import Settings

WEBHOOK_SECRET = "whsec_test"


@pytest.fixture
def settings() -> Settings:
    """Settings isolated from the environment's storage, email and processor config."""
    return Settings(
        webhook_secret=WEBHOOK_SECRET,
        invoice_secret="",
        processor_api_key="",
        database_url="sqlite://",
        storage_enabled=False,
        email_api_key="",
        email_from="",
        issuer_name="FuelFlow",
        issuer_address="1 Depot Road\\nLeeds\\nLS1 1AA",
        tax_enabled=True,
        tax_rate_percent=Decimal("20"),
        prices_include_tax=False,
    )


@pytest.fixture
def database() -> Generator[Database, None, None]:
    """Fresh in-memory SQLite ledger with all tables created."""
    db = Database("sqlite://")
    db.create_tables()
    yield db
    db.engine.dispose()


@pytest.fixture
def seed_order(database: Database) -> Callable[..., str]:
    """Insert an order row and return its id."""

    def _seed(order_id: str = "ord_1", **fields: Any) -> str:
        values: dict[str, Any] = {
            "customer_email": "Buyer@Example.com",
            "customer_name": "Buyer Ltd",
            "product": "diesel",
            "quantity": Decimal("1000"),
            "unit_price_pence": 183,
            "total_pence": 183000,
        }
        values.update(fields)
        with database.session_scope() as session:
            session.add(OrderRecord(id=order_id, **values))
        return order_id

    return _seed


def _event_body(
    event_id: str = "evt_1",
    event_type: str = "checkout.session.completed",
    obj: dict[str, Any] | None = None,
    created: int = 1741000000,
) -> bytes:
    if obj is None:
        obj = {
            "id": "cs_1",
            "amount_total": 183000,
            "currency": "gbp",
            "customer_details": {"email": "buyer@example.com", "name": "Buyer Ltd"},
            "metadata": {"order_id": "ord_1"},
            "payment_intent": {"id": "pi_1", "amount": 183000, "currency": "gbp"},
        }
    return json.dumps(
        {"id": event_id, "type": event_type, "created": created, "data": {"object": obj}}
    ).encode("utf-8")


def compute_signature(secret: str, timestamp: int, body: bytes) -> str:
    """Hex HMAC-SHA256 of "<timestamp>." + body, as the processor signs events."""
    signed = str(timestamp).encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def _sign(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},v1={compute_signature(secret, ts, body)}"


@pytest.fixture
def event_body() -> Callable[..., bytes]:
    """Build a serialized processor event (checkout session paying ord_1 by default)."""
    return _event_body


@pytest.fixture
def sign_body() -> Callable[..., str]:
    """Build a valid signature header value for a body."""
    return _sign
