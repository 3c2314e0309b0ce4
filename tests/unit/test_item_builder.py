"""Unit tests for the item builder fallback chain."""

from decimal import Decimal

import pytest

from services.invoicing.items import (
    EventTotalSource,
    OrderSource,
    ProcessorItemsSource,
    build_items,
    items_from_event_total,
    minor_to_major,
    quantity_from_metadata,
    select_source,
)
from services.ledger.schema import Order
from services.shared.errors import PriceLookupFailure
from services.webhooks.events import ProcessorLineItem


@pytest.fixture
def priced_order() -> Order:
    return Order(
        id="ord_1",
        product="diesel",
        quantity=Decimal("1000"),
        unit_price_pence=183,
        total_pence=183000,
    )


@pytest.fixture
def processor_items() -> list[ProcessorLineItem]:
    return [
        ProcessorLineItem(description="Something else", quantity=3, amount_total=999),
        ProcessorLineItem(description="Another", quantity=1, amount_total=1),
    ]


class TestSourceSelection:
    """Tier precedence."""

    def test_order_wins_over_processor_items(
        self, priced_order: Order, processor_items: list[ProcessorLineItem]
    ) -> None:
        """A priced order yields exactly one item, ignoring processor rows."""
        items = build_items(priced_order, processor_items, {"litres": "5"}, 50000)

        assert len(items) == 1
        assert items[0].quantity == Decimal("1000")
        assert items[0].total == Decimal("1830")
        assert items[0].unit_price is None
        assert items[0].description == "Diesel delivery"

    def test_unpriced_order_falls_through(self, processor_items: list[ProcessorLineItem]) -> None:
        """An order without quantity is not a usable source."""
        order = Order(id="ord_1", total_pence=183000)

        source = select_source(order, processor_items, {})

        assert isinstance(source, ProcessorItemsSource)

    def test_no_items_uses_event_total(self) -> None:
        """With no order and no processor rows, the event amount is used."""
        assert isinstance(select_source(None, [], {}, 1000), EventTotalSource)

    def test_order_source(self, priced_order: Order) -> None:
        assert isinstance(select_source(priced_order, [], {}), OrderSource)


class TestOrderTier:
    """Items from the internal order."""

    def test_unit_price_used_when_total_missing(self) -> None:
        """Unit price is only used when the order has no total."""
        order = Order(id="ord_1", quantity=Decimal("500"), unit_price_pence=150)

        items = build_items(order, [], {})

        assert items[0].unit_price == Decimal("1.5")
        assert items[0].total is None

    def test_generic_description_without_product(self) -> None:
        order = Order(id="ord_1", quantity=Decimal("1"), total_pence=100)

        assert build_items(order, [], {})[0].description == "Fuel delivery"


class TestProcessorTier:
    """Items from processor line items."""

    def test_quantity_precedence(self) -> None:
        """Item metadata beats event metadata, which beats the purchased count."""
        rows = [
            ProcessorLineItem(
                description="A", quantity=2, amount_total=1000, metadata={"litres": "250"}
            ),
            ProcessorLineItem(description="B", quantity=2, amount_total=1000),
        ]

        with_event = build_items(None, rows, {"quantity": "700"})
        without_event = build_items(None, rows, {})

        assert [i.quantity for i in with_event] == [Decimal("250"), Decimal("700")]
        assert [i.quantity for i in without_event] == [Decimal("250"), Decimal("2")]

    def test_amounts_converted_once(self) -> None:
        """Minor units become major units exactly once."""
        rows = [ProcessorLineItem(description="A", quantity=1, amount_total=183000)]

        items = build_items(None, rows, {})

        assert items[0].total == Decimal("1830")

    def test_unit_amount_fallback(self) -> None:
        """Rows without a total are priced by unit amount."""
        rows = [ProcessorLineItem(product_name="Kerosene", quantity=4, unit_amount=125)]

        items = build_items(None, rows, {})

        assert items[0].description == "Kerosene"
        assert items[0].unit_price == Decimal("1.25")
        assert items[0].quantity == Decimal("4")

    def test_row_without_amount_billed_at_zero(self) -> None:
        rows = [ProcessorLineItem(description="Mystery", quantity=None)]

        items = build_items(None, rows, {})

        assert items[0].total == Decimal("0")
        assert items[0].quantity == Decimal("1")


class TestEventTier:
    """Synthetic item from the event amount."""

    def test_payment_item(self) -> None:
        """One 'Payment' line for the whole amount, quantity from metadata."""
        items = build_items(None, [], {"litres": "900"}, 164700)

        assert len(items) == 1
        assert items[0].description == "Payment"
        assert items[0].quantity == Decimal("900")
        assert items[0].total == Decimal("1647")

    def test_metadata_description(self) -> None:
        items = build_items(None, [], {"description": "Heating oil"}, 100)

        assert items[0].description == "Heating oil"
        assert items[0].quantity == Decimal("1")

    def test_missing_amount_raises_in_stage(self) -> None:
        """The stage itself reports missing pricing."""
        with pytest.raises(PriceLookupFailure):
            items_from_event_total(EventTotalSource(None))

    def test_missing_amount_still_yields_one_item(self) -> None:
        """The builder never fails and never returns an empty list."""
        items = build_items(None, [], {}, None, event_id="evt_1")

        assert len(items) == 1
        assert items[0].description == "Payment"
        assert items[0].total == Decimal("0")


class TestHelpers:
    """Conversion helpers."""

    @pytest.mark.parametrize(
        ("metadata", "expected"),
        [
            ({"litres": "1000"}, Decimal("1000")),
            ({"quantity": " 2.5 "}, Decimal("2.5")),
            ({"litres": "abc", "quantity": "3"}, Decimal("3")),
            ({"litres": "0"}, None),
            ({"litres": "-4"}, None),
            ({"litres": "NaN"}, None),
            ({}, None),
        ],
    )
    def test_quantity_from_metadata(
        self, metadata: dict[str, str], expected: Decimal | None
    ) -> None:
        assert quantity_from_metadata(metadata) == expected

    def test_minor_to_major(self) -> None:
        assert minor_to_major(183) == Decimal("1.83")
