"""Totals calculator and money formatting.

Per-line values stay in full precision. Net and tax sums are rounded to 2dp
(half-up) once, at the end, and the grand total is the sum of those two
rounded figures. That two-stage rounding reproduces the amounts on invoices
already issued and can differ by a cent from rounding the unrounded sum.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal

from services.invoicing.schema import InvoiceLineItem, InvoiceRow, InvoiceTotals
from services.shared.config import Settings

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")

CURRENCY_SYMBOLS = {"GBP": "£", "EUR": "€", "USD": "$"}


def round_money(value: Decimal) -> Decimal:
    """Round to 2 decimal places, half-up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def currency_symbol(currency: str | None) -> str:
    """Symbol for a known ISO code, empty string otherwise."""
    return CURRENCY_SYMBOLS.get((currency or "").upper(), "")


def format_money(value: Decimal, currency: str | None) -> str:
    return f"{currency_symbol(currency)}{round_money(value):.2f}"


def format_quantity(value: Decimal) -> str:
    """Grouped quantity with at most 2 decimals (1000 -> '1,000', 2.5 -> '2.5')."""
    text = f"{round_money(value):,.2f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


def unit_price_of(item: InvoiceLineItem) -> Decimal:
    """Raw unit price, derived from the line total when only that is known."""
    if item.unit_price is not None:
        return item.unit_price
    if item.quantity == ZERO:
        logger.warning(f"Line '{item.description}' has zero quantity; unit price taken as 0")
        return ZERO
    return item.total / item.quantity


def compute_totals(
    items: list[InvoiceLineItem],
    tax_rate: Decimal,
    tax_enabled: bool = True,
    prices_include_tax: bool = False,
) -> InvoiceTotals:
    """Compute per-line and invoice totals under a tax regime.

    Args:
        items: Invoice lines
        tax_rate: Tax rate as a fraction (0.2 for 20%)
        tax_enabled: When False no tax is charged and prices are used as-is
        prices_include_tax: Raw prices are tax-inclusive and must be reduced

    Returns:
        InvoiceTotals with full-precision rows and 2dp totals
    """
    rows: list[InvoiceRow] = []
    net_sum = ZERO
    tax_sum = ZERO

    for item in items:
        raw_unit = unit_price_of(item)
        if not tax_enabled:
            unit_ex_tax = raw_unit
        elif prices_include_tax:
            unit_ex_tax = raw_unit / (1 + tax_rate)
        else:
            unit_ex_tax = raw_unit

        net = item.quantity * unit_ex_tax
        tax = net * tax_rate if tax_enabled else ZERO
        net_sum += net
        tax_sum += tax

        rows.append(
            InvoiceRow(
                description=item.description or "Item",
                quantity=item.quantity,
                unit_ex_tax=unit_ex_tax,
                net=net,
                tax=tax,
                tax_percent=tax_rate * 100 if tax_enabled else ZERO,
            )
        )

    net_total = round_money(net_sum)
    tax_total = round_money(tax_sum)
    return InvoiceTotals(
        rows=rows,
        net_total=net_total,
        tax_total=tax_total,
        grand_total=net_total + tax_total,
    )


def compute_totals_for(items: list[InvoiceLineItem], settings: Settings) -> InvoiceTotals:
    """compute_totals with the configured tax regime."""
    return compute_totals(
        items,
        tax_rate=settings.tax_rate,
        tax_enabled=settings.tax_enabled,
        prices_include_tax=settings.prices_include_tax,
    )
