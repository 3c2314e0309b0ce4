#!/usr/bin/env python3
"""Render a sample invoice to a local PDF.

Uses the configured issuer details and tax regime (APP_* environment
variables or .env), so operators can check a layout change or a new tax
setting without sending a payment event.

Usage:
    python scripts/render_sample_invoice.py
    python scripts/render_sample_invoice.py --items 40 --output overflow.pdf
"""

from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

from services.invoicing.schema import Customer, InvoiceLineItem
from services.invoicing.totals import compute_totals_for, format_money
from services.rendering.pdf import InvoiceRenderer
from services.shared.config import get_settings

SAMPLE_NOTES = (
    "Delivery to the rear yard gate. Please call the site manager on arrival; "
    "tank is located next to the loading bay."
)


def sample_items(count: int) -> list[InvoiceLineItem]:
    """One fuel delivery line, plus numbered extras when more are requested."""
    items = [
        InvoiceLineItem(
            description="Diesel delivery", quantity=Decimal("1000"), total=Decimal("1830")
        )
    ]
    for i in range(1, count):
        items.append(
            InvoiceLineItem(
                description=f"Additional drop {i}",
                quantity=Decimal("50"),
                unit_price=Decimal("1.25"),
            )
        )
    return items


def render_sample(output: Path, item_count: int, with_notes: bool) -> None:
    """Render the sample and report what was produced."""
    settings = get_settings()
    renderer = InvoiceRenderer(settings)
    items = sample_items(item_count)
    totals = compute_totals_for(items, settings)
    now = datetime.now(UTC)

    print("=" * 60)
    print("SAMPLE INVOICE")
    print("=" * 60)
    print(f"Issuer:             {settings.issuer_name}")
    print(f"Tax enabled:        {settings.tax_enabled} ({settings.tax_rate_percent}%)")
    print(f"Prices include tax: {settings.prices_include_tax}")
    print(f"Items:              {len(items)}")

    built = renderer.render(
        customer=Customer(
            name="Sample Customer Ltd",
            email="accounts@example.com",
            address_line1="1 Example Street",
            city="London",
            postcode="EC1A 1AA",
        ),
        totals=totals,
        currency=settings.default_currency,
        invoice_number=f"INV-SAMPLE-{int(now.timestamp())}",
        issue_date=now.date(),
        order_id="sample-order",
        notes=SAMPLE_NOTES if with_notes else None,
    )
    output.write_bytes(built.content)

    print("-" * 60)
    print(f"Net:                {format_money(totals.net_total, settings.default_currency)}")
    tax_heading = f"{settings.tax_label}:"
    print(f"{tax_heading:<20}{format_money(totals.tax_total, settings.default_currency)}")
    print(f"Total:              {format_money(totals.grand_total, settings.default_currency)}")
    print(f"Pages:              {built.page_count}")
    if built.hidden_items:
        print(f"⚠ {built.hidden_items} item(s) summarised by the overflow guard")
    print(f"\n✓ Written {len(built.content)} bytes to {output}")


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Render a sample invoice PDF")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path("sample_invoice.pdf"),
        help="Output PDF path",
    )
    parser.add_argument(
        "--items",
        type=int,
        default=1,
        help="Number of line items to render",
    )
    parser.add_argument(
        "--no-notes",
        action="store_true",
        help="Omit the notes section",
    )
    args = parser.parse_args()

    render_sample(args.output, max(args.items, 1), not args.no_notes)
