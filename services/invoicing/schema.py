"""Invoice data models shared by the item builder, calculator, renderer and dispatcher.

Line item money here is in major currency units (pounds) as Decimal; the
conversion from processor minor units happens once, in the item builder.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InvoiceLineItem(_CamelModel):
    """A billable row.

    Exactly one of ``total`` and ``unit_price`` is set; the totals calculator
    derives the other. Whether the amount includes tax follows the configured
    tax regime.
    """

    description: str = "Item"
    quantity: Decimal = Decimal("1")
    total: Decimal | None = None
    unit_price: Decimal | None = None

    @model_validator(mode="after")
    def _one_price_representation(self) -> "InvoiceLineItem":
        if (self.total is None) == (self.unit_price is None):
            raise ValueError("exactly one of total or unit_price must be set")
        return self


class Customer(_CamelModel):
    """Invoice recipient."""

    name: str | None = None
    email: str | None = None
    address_line1: str | None = None
    address_line2: str | None = None
    city: str | None = None
    postcode: str | None = None

    def address_lines(self) -> list[str]:
        """Recipient column lines, empty values dropped."""
        lines = [
            self.name or "Customer",
            self.address_line1,
            self.address_line2,
            " ".join(part for part in (self.city, self.postcode) if part),
            f"Email: {self.email}" if self.email else None,
        ]
        return [line for line in lines if line]


class InvoiceMeta(_CamelModel):
    """Optional invoice identifiers and notes."""

    invoice_number: str | None = None
    order_id: str | None = None
    notes: str | None = None
    issue_date: date | None = Field(None, alias="issueDateISO")
    routing_date: date | None = Field(
        None, description="Date that selects the storage folder; defaults to issue date"
    )

    @field_validator("issue_date", "routing_date", mode="before")
    @classmethod
    def _date_from_timestamp(cls, value: object) -> object:
        """Accept full ISO timestamps (e.g. from toISOString()) and keep their date."""
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, str) and "T" in value:
            return datetime.fromisoformat(value).date()
        return value


class InvoiceRequest(_CamelModel):
    """Input of the invoice construction boundary."""

    customer: Customer
    items: list[InvoiceLineItem]
    currency: str = "GBP"
    meta: InvoiceMeta = Field(default_factory=InvoiceMeta)
    email: bool = Field(True, description="Email the invoice when a recipient is known")


class InvoiceRow(BaseModel):
    """Computed values for one line, in full precision."""

    description: str
    quantity: Decimal
    unit_ex_tax: Decimal
    net: Decimal
    tax: Decimal
    tax_percent: Decimal


class InvoiceTotals(BaseModel):
    """Rows plus totals; totals are rounded to 2dp half-up."""

    rows: list[InvoiceRow]
    net_total: Decimal
    tax_total: Decimal
    grand_total: Decimal


class BuiltInvoice(BaseModel):
    """Rendered invoice handed to the delivery dispatcher.

    Attributes:
        content: PDF bytes
        filename: Invoice number plus extension
        invoice_number: Number printed on the document
        total: Grand total in major units, 2dp
        page_count: Pages in the document
        hidden_items: Rows summarised instead of drawn by the overflow guard
    """

    content: bytes
    filename: str
    invoice_number: str
    total: Decimal
    page_count: int
    hidden_items: int = 0


class InvoiceOutcome(BaseModel):
    """Result of constructing and delivering one invoice."""

    success: bool
    invoice_number: str | None = None
    document_path: str | None = None
    page_count: int | None = None
    total: Decimal | None = None
    stored: bool = False
    emailed: bool = False
    email_id: str | None = None
    error: str | None = None
