"""Item builder: derive billable lines from the best available source.

Sources in descending priority:

1. ``OrderSource``: the internal order (quantity plus total or unit price).
2. ``ProcessorItemsSource``: line items the processor recorded for the checkout.
3. ``EventTotalSource``: the event's charged amount as a single "Payment" line.

``select_source`` picks the variant, ``items_from_source`` turns it into
lines. The chain always yields at least one line; if even the event amount is
missing, a zero-value line is emitted rather than failing the invoice.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from services.invoicing.schema import InvoiceLineItem
from services.ledger.schema import Order
from services.shared.errors import PriceLookupFailure
from services.webhooks.events import ProcessorLineItem

logger = logging.getLogger(__name__)

QUANTITY_KEYS = ("litres", "quantity")
MINOR_UNITS = Decimal("100")


def minor_to_major(amount: int) -> Decimal:
    """Convert integer minor units (pence) to a major-unit Decimal."""
    return Decimal(amount) / MINOR_UNITS


def quantity_from_metadata(metadata: dict[str, str]) -> Decimal | None:
    """Positive quantity from metadata, or None if absent or unusable."""
    for key in QUANTITY_KEYS:
        raw = metadata.get(key)
        if raw is None:
            continue
        try:
            value = Decimal(str(raw).strip())
        except InvalidOperation:
            continue
        if value.is_finite() and value > 0:
            return value
    return None


@dataclass(frozen=True)
class OrderSource:
    order: Order


@dataclass(frozen=True)
class ProcessorItemsSource:
    items: list[ProcessorLineItem]
    event_metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class EventTotalSource:
    amount: int | None
    event_metadata: dict[str, str] = field(default_factory=dict)


LineItemSource = OrderSource | ProcessorItemsSource | EventTotalSource


def select_source(
    order: Order | None,
    processor_items: list[ProcessorLineItem],
    event_metadata: dict[str, str],
    event_amount: int | None = None,
) -> LineItemSource:
    """Pick the highest-priority source that has usable data."""
    if order is not None and order.is_priced:
        return OrderSource(order)
    if processor_items:
        return ProcessorItemsSource(processor_items, event_metadata)
    return EventTotalSource(event_amount, event_metadata)


def _order_description(order: Order) -> str:
    return f"{order.product.strip().capitalize()} delivery" if order.product else "Fuel delivery"


def items_from_order(source: OrderSource) -> list[InvoiceLineItem]:
    """One line from the order; its total is authoritative over the unit price."""
    order = source.order
    quantity = order.quantity if order.quantity is not None else Decimal("1")
    if order.total_pence is not None:
        return [
            InvoiceLineItem(
                description=_order_description(order),
                quantity=quantity,
                total=minor_to_major(order.total_pence),
            )
        ]
    return [
        InvoiceLineItem(
            description=_order_description(order),
            quantity=quantity,
            unit_price=minor_to_major(order.unit_price_pence or 0),
        )
    ]


def items_from_processor(source: ProcessorItemsSource) -> list[InvoiceLineItem]:
    """One line per processor row.

    Quantity: item metadata, then event metadata, then the purchased count.
    """
    event_quantity = quantity_from_metadata(source.event_metadata)
    lines = []
    for row in source.items:
        quantity = quantity_from_metadata(row.metadata) or event_quantity
        if quantity is None:
            quantity = Decimal(row.quantity) if row.quantity and row.quantity > 0 else Decimal("1")
        description = row.description or row.product_name or "Item"

        if row.amount_total is not None:
            lines.append(
                InvoiceLineItem(
                    description=description,
                    quantity=quantity,
                    total=minor_to_major(row.amount_total),
                )
            )
        elif row.unit_amount is not None:
            lines.append(
                InvoiceLineItem(
                    description=description,
                    quantity=quantity,
                    unit_price=minor_to_major(row.unit_amount),
                )
            )
        else:
            logger.warning(f"Processor line '{description}' has no amount; billed at zero")
            lines.append(
                InvoiceLineItem(description=description, quantity=quantity, total=Decimal("0"))
            )
    return lines


def items_from_event_total(source: EventTotalSource) -> list[InvoiceLineItem]:
    """Single synthetic line for the whole charged amount.

    Raises:
        PriceLookupFailure: If the event carries no amount either
    """
    if source.amount is None:
        raise PriceLookupFailure("Event carries no charged amount")
    return [
        InvoiceLineItem(
            description=source.event_metadata.get("description") or "Payment",
            quantity=quantity_from_metadata(source.event_metadata) or Decimal("1"),
            total=minor_to_major(source.amount),
        )
    ]


def items_from_source(source: LineItemSource) -> list[InvoiceLineItem]:
    match source:
        case OrderSource():
            return items_from_order(source)
        case ProcessorItemsSource():
            return items_from_processor(source)
        case EventTotalSource():
            return items_from_event_total(source)
    raise TypeError(f"Unknown line item source: {type(source).__name__}")


def build_items(
    order: Order | None,
    processor_items: list[ProcessorLineItem],
    event_metadata: dict[str, str],
    event_amount: int | None = None,
    *,
    event_id: str | None = None,
) -> list[InvoiceLineItem]:
    """Derive the invoice lines for a payment.

    Never raises and never returns an empty list.
    """
    source = select_source(order, processor_items, event_metadata, event_amount)
    try:
        items = items_from_source(source)
    except PriceLookupFailure as e:
        e.event_id = event_id
        e.order_id = order.id if order is not None else None
        logger.warning(f"{e} ({e.context()}); emitting a zero-value line")
        items = []

    if not items:
        items = [InvoiceLineItem(description="Payment", quantity=Decimal("1"), total=Decimal("0"))]

    logger.info(f"Built {len(items)} invoice line(s) from {type(source).__name__}")
    return items
