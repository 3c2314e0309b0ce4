"""Payment event models parsed from verified processor notifications."""

from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, Field, ValidationError

SESSION_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
HANDLED_EVENT_TYPES = frozenset({SESSION_COMPLETED, PAYMENT_SUCCEEDED})


class InvalidPayload(ValueError):
    """Verified body is not a processor event object."""


def _str_metadata(raw: Any) -> dict[str, str]:
    if not isinstance(raw, dict):
        return {}
    return {str(k): str(v) for k, v in raw.items() if v is not None}


class ProcessorPayment(BaseModel):
    """Processor-side payment record (a payment intent).

    Amounts are integer minor currency units.
    """

    id: str
    amount: int = 0
    amount_received: int | None = None
    currency: str | None = None
    status: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)
    receipt_email: str | None = None
    billing_email: str | None = None
    shipping_name: str | None = None

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "ProcessorPayment":
        """Build from the processor's payment intent JSON shape."""
        latest_charge = obj.get("latest_charge")
        billing_email = None
        if isinstance(latest_charge, dict):
            billing_email = (latest_charge.get("billing_details") or {}).get("email")
        shipping = obj.get("shipping") or {}
        return cls(
            id=obj["id"],
            amount=obj.get("amount") or 0,
            amount_received=obj.get("amount_received"),
            currency=obj.get("currency"),
            status=obj.get("status"),
            metadata=_str_metadata(obj.get("metadata")),
            receipt_email=obj.get("receipt_email"),
            billing_email=billing_email,
            shipping_name=shipping.get("name"),
        )

    @property
    def captured_amount(self) -> int:
        """Amount actually received, falling back to the requested amount."""
        return self.amount_received if self.amount_received is not None else self.amount

    @property
    def email(self) -> str | None:
        return self.receipt_email or self.metadata.get("customer_email") or self.billing_email


class ProcessorLineItem(BaseModel):
    """One purchased row reported by the processor for a checkout session."""

    description: str | None = None
    quantity: int | None = None
    amount_total: int | None = None
    unit_amount: int | None = None
    product_name: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_object(cls, obj: dict[str, Any]) -> "ProcessorLineItem":
        price = obj.get("price") or {}
        product = price.get("product")
        product_name = None
        metadata = _str_metadata(price.get("metadata"))
        if isinstance(product, dict):
            product_name = product.get("name")
            metadata = {**_str_metadata(product.get("metadata")), **metadata}
        return cls(
            description=obj.get("description"),
            quantity=obj.get("quantity"),
            amount_total=obj.get("amount_total"),
            unit_amount=price.get("unit_amount"),
            product_name=product_name,
            metadata=metadata,
        )


class PaymentEvent(BaseModel):
    """Immutable notification from the payment processor.

    Attributes:
        id: Globally unique event identifier
        type: Processor event type
        created: Unix timestamp the processor created the event at
        data: Event data envelope ({"object": {...}})
        raw_payload: Request body exactly as received, kept for audit
    """

    model_config = {"frozen": True}

    id: str
    type: str
    created: int | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    raw_payload: str = ""

    @classmethod
    def parse(cls, raw_body: bytes) -> "PaymentEvent":
        """Parse a verified request body.

        Raises:
            InvalidPayload: If the body is not a JSON event object
        """
        try:
            text = raw_body.decode("utf-8")
            event = cls.model_validate_json(text)
        except (UnicodeDecodeError, ValidationError) as e:
            raise InvalidPayload(f"Unparseable event payload: {e}") from e
        return event.model_copy(update={"raw_payload": text})

    @property
    def object(self) -> dict[str, Any]:
        obj = self.data.get("object")
        return obj if isinstance(obj, dict) else {}

    @property
    def is_handled(self) -> bool:
        return self.type in HANDLED_EVENT_TYPES

    @property
    def is_session(self) -> bool:
        return self.type == SESSION_COMPLETED

    @property
    def metadata(self) -> dict[str, str]:
        return _str_metadata(self.object.get("metadata"))

    @property
    def session_id(self) -> str | None:
        return self.object.get("id") if self.is_session else None

    @property
    def payment_reference(self) -> str | ProcessorPayment | None:
        """Nested payment the event refers to.

        Session events carry either the payment id (needs a processor lookup)
        or the expanded payment object. Payment events are the payment.
        """
        if not self.is_session:
            return ProcessorPayment.from_object(self.object) if self.object.get("id") else None
        ref = self.object.get("payment_intent")
        if isinstance(ref, dict) and ref.get("id"):
            return ProcessorPayment.from_object(ref)
        if isinstance(ref, str) and ref:
            return ref
        return None

    @property
    def amount_total(self) -> int | None:
        """Total charged by the event, in minor units."""
        obj = self.object
        if self.is_session:
            return obj.get("amount_total")
        received = obj.get("amount_received")
        return received if received is not None else obj.get("amount")

    @property
    def currency(self) -> str | None:
        currency = self.object.get("currency")
        return currency.upper() if isinstance(currency, str) and currency else None

    @property
    def customer_email(self) -> str | None:
        """Email from the processor's customer details (not metadata)."""
        obj = self.object
        if self.is_session:
            details = obj.get("customer_details") or {}
            return details.get("email") or obj.get("customer_email")
        return obj.get("receipt_email")

    @property
    def metadata_email(self) -> str | None:
        meta = self.metadata
        return meta.get("email") or meta.get("customer_email")

    @property
    def customer_name(self) -> str | None:
        obj = self.object
        if self.is_session:
            name = (obj.get("customer_details") or {}).get("name")
        else:
            name = (obj.get("shipping") or {}).get("name")
        return name or self.metadata.get("customer_name")

    @property
    def created_at(self) -> datetime | None:
        return datetime.fromtimestamp(self.created, tz=UTC) if self.created else None

    @property
    def metadata_date(self) -> date | None:
        """Delivery date carried in event metadata, if it parses as ISO."""
        value = self.metadata.get("delivery_date")
        if not value:
            return None
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            return None
