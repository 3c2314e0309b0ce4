"""Read models for ledger rows."""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Order(BaseModel):
    """Internal order as seen by the invoicing pipeline.

    Monetary fields are integer minor currency units (pence). Once populated,
    ``total_pence == round(quantity * unit_price_pence)``.
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: datetime | None = None
    customer_email: str | None = None
    customer_name: str | None = None
    product: str | None = None
    quantity: Decimal | None = None
    unit_price_pence: int | None = None
    total_pence: int | None = None
    status: Literal["pending", "paid", "failed"] = "pending"
    paid_at: datetime | None = None
    processor_session_id: str | None = None
    processor_payment_id: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    postcode: str | None = None
    delivery_date: date | None = None
    notes: str | None = Field(None, description="Free-text fulfilment note")

    @property
    def is_priced(self) -> bool:
        """True when the order alone can produce an invoice line."""
        return self.quantity is not None and (
            self.total_pence is not None or self.unit_price_pence is not None
        )
