"""Fixed-layout A4 invoice renderer built on ReportLab.

The page is laid out top to bottom by a single cursor:

- header band with the issuer name and document title
- issuer / recipient address columns (cursor continues below the taller one)
- metadata row: invoice number, issue date, optional order reference
- line item table with proportional columns and zebra rows
- totals block under the rightmost columns, grand total emphasised
- optional notes, word-wrapped and truncated above the footer
- centred footer with registration details

Rows that would cross the reserved bottom band are not drawn; a single
"+N more items not shown" line replaces them and totals still cover every
item. There is no continuation page: invoices are one page by construction.
"""

import io
import logging
import textwrap
from collections.abc import Generator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from reportlab.lib.colors import HexColor, white
from reportlab.lib.pagesizes import A4
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfgen.canvas import Canvas

from services.invoicing.schema import BuiltInvoice, Customer, InvoiceTotals
from services.invoicing.totals import format_money, format_quantity
from services.shared.config import Settings
from services.shared.errors import RenderFailure

logger = logging.getLogger(__name__)

MARGIN = 36
HEADER_HEIGHT = 66
LINE_HEIGHT = 12
TABLE_HEAD_HEIGHT = 24
ROW_HEIGHT = 22
TOTALS_ROW_HEIGHT = 24
CELL_PAD = 8
# Space kept free below the table for totals, notes and footer
RESERVED_BOTTOM = 180
NOTES_BOTTOM = 80
FOOTER_OFFSET = 18
NOTES_WRAP_CHARS = 95

NAVY = HexColor("#0F172A")
TEXT = HexColor("#111827")
BORDER = HexColor("#E5E7EB")
GRAY = HexColor("#F3F4F6")
ZEBRA = HexColor("#FAFAFA")
MUTED = HexColor("#6B7280")
NOTES_TEXT = HexColor("#374151")

FONT = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_ITALIC = "Helvetica-Oblique"


@dataclass(frozen=True)
class Column:
    title: str
    share: float
    align: str


@dataclass(frozen=True)
class IssuerDetails:
    """Seller block and footer text."""

    name: str
    address_lines: list[str]
    email: str = ""
    phone: str = ""
    company_number: str = ""
    vat_number: str = ""
    jurisdiction: str = ""

    @classmethod
    def from_settings(cls, settings: Settings) -> "IssuerDetails":
        return cls(
            name=settings.issuer_name,
            address_lines=settings.issuer_address_lines,
            email=settings.issuer_email,
            phone=settings.issuer_phone,
            company_number=settings.issuer_company_number,
            vat_number=settings.issuer_vat_number,
            jurisdiction=settings.issuer_jurisdiction,
        )

    def column_lines(self, tax_label: str) -> list[str]:
        lines = [
            self.name,
            *self.address_lines,
            f"Email: {self.email}" if self.email else "",
            f"Tel: {self.phone}" if self.phone else "",
            f"Company No: {self.company_number}" if self.company_number else "",
            f"{tax_label} No: {self.vat_number}" if self.vat_number else "",
        ]
        return [line for line in lines if line]

    def footer_text(self, tax_label: str) -> str:
        parts = [self.name]
        if self.jurisdiction:
            parts.append(self.jurisdiction)
        if self.company_number:
            parts.append(f"Company No {self.company_number}")
        if self.vat_number:
            parts.append(f"{tax_label} No {self.vat_number}")
        return " • ".join(parts)


class _Page:
    """Top-down drawing helpers over a ReportLab canvas (origin bottom-left)."""

    def __init__(self, canvas: Canvas, pagesize: tuple[float, float] = A4) -> None:
        self.canvas = canvas
        self.width, self.height = pagesize

    def rect(self, x: float, top: float, w: float, h: float, fill=None, stroke=None) -> None:
        c = self.canvas
        if fill is not None:
            c.setFillColor(fill)
        if stroke is not None:
            c.setStrokeColor(stroke)
        c.rect(
            x, self.height - top - h, w, h,
            fill=int(fill is not None), stroke=int(stroke is not None),
        )

    def hline(self, x1: float, x2: float, top: float, color=BORDER) -> None:
        self.canvas.setStrokeColor(color)
        self.canvas.line(x1, self.height - top, x2, self.height - top)

    def text(
        self,
        value: str,
        x: float,
        top: float,
        *,
        size: float = 10,
        font: str = FONT,
        color=TEXT,
        width: float | None = None,
        align: str = "left",
    ) -> None:
        """Draw one line with its top edge at ``top``; never wraps."""
        c = self.canvas
        if width is not None:
            value = _fit(value, font, size, width)
        c.setFont(font, size)
        c.setFillColor(color)
        baseline = self.height - top - size * 0.8
        if align == "right" and width is not None:
            c.drawRightString(x + width, baseline, value)
        elif align == "center" and width is not None:
            c.drawCentredString(x + width / 2, baseline, value)
        else:
            c.drawString(x, baseline, value)


def _fit(value: str, font: str, size: float, width: float) -> str:
    """Truncate with an ellipsis so the text fits the width."""
    if stringWidth(value, font, size) <= width:
        return value
    while value and stringWidth(value + "...", font, size) > width:
        value = value[:-1]
    return value + "..."


@contextmanager
def _pdf_canvas(title: str, author: str) -> Generator[tuple[Canvas, io.BytesIO], None, None]:
    """Canvas writing into memory; the document is finalised on exit."""
    buffer = io.BytesIO()
    canvas = Canvas(buffer, pagesize=A4)
    canvas.setTitle(title)
    canvas.setAuthor(author)
    yield canvas, buffer
    canvas.save()


class InvoiceRenderer:
    """Renders computed invoices to single-page PDF documents."""

    def __init__(self, settings: Settings, issuer: IssuerDetails | None = None) -> None:
        self.settings = settings
        self.issuer = issuer or IssuerDetails.from_settings(settings)
        self.tax_enabled = settings.tax_enabled
        tax = settings.tax_label
        self.columns = (
            Column("Description", 0.49, "left"),
            Column(settings.quantity_label, 0.13, "right"),
            Column(f"Unit ex-{tax}", 0.17, "right"),
            Column("Net", 0.15, "right"),
            Column(f"{tax} %", 0.06, "right"),
        )

    def render(
        self,
        customer: Customer,
        totals: InvoiceTotals,
        currency: str,
        invoice_number: str,
        issue_date: date,
        order_id: str | None = None,
        notes: str | None = None,
    ) -> BuiltInvoice:
        """Lay out the invoice and return the finished PDF.

        Raises:
            RenderFailure: If layout or PDF encoding fails
        """
        try:
            with _pdf_canvas(f"Invoice {invoice_number}", self.issuer.name) as (canvas, buffer):
                page = _Page(canvas)
                y = self._draw_header(page)
                y = self._draw_parties(page, customer, y)
                y = self._draw_meta(page, invoice_number, issue_date, order_id, y)
                y, hidden = self._draw_table(page, totals, currency, y)
                y = self._draw_totals(page, totals, currency, y)
                if notes:
                    self._draw_notes(page, notes, y)
                self._draw_footer(page)
                page_count = canvas.getPageNumber()
            content = buffer.getvalue()
        except Exception as e:
            raise RenderFailure(f"Invoice {invoice_number} could not be rendered: {e}") from e

        logger.info(
            f"Rendered invoice {invoice_number}: {len(totals.rows)} line(s), "
            f"{hidden} hidden, {page_count} page(s), {len(content)} bytes"
        )
        return BuiltInvoice(
            content=content,
            filename=f"{invoice_number}.pdf",
            invoice_number=invoice_number,
            total=totals.grand_total,
            page_count=page_count,
            hidden_items=hidden,
        )

    def _draw_header(self, page: _Page) -> float:
        page.rect(0, 0, page.width, HEADER_HEIGHT, fill=NAVY)
        inner = page.width - MARGIN * 2
        page.text(
            self.issuer.name, MARGIN, 20, size=22, font=FONT_BOLD, color=white, width=inner - 170
        )
        page.text(
            "TAX INVOICE", page.width - MARGIN - 160, 24,
            size=11, color=white, width=160, align="right",
        )
        return HEADER_HEIGHT + 12

    def _draw_parties(self, page: _Page, customer: Customer, y: float) -> float:
        left_x = MARGIN
        right_x = page.width / 2 + 12
        col_w = page.width / 2 - MARGIN - 24

        page.text("From", left_x, y, size=11, font=FONT_BOLD)
        page.text("Bill To", right_x, y, size=11, font=FONT_BOLD)

        y_left = y_right = y + 16
        for line in self.issuer.column_lines(self.settings.tax_label):
            page.text(line, left_x, y_left, width=col_w)
            y_left += LINE_HEIGHT
        for line in customer.address_lines():
            page.text(line, right_x, y_right, width=col_w)
            y_right += LINE_HEIGHT

        y = max(y_left, y_right) + 14
        page.hline(MARGIN, page.width - MARGIN, y)
        return y + 12

    def _draw_meta(
        self, page: _Page, invoice_number: str, issue_date: date, order_id: str | None, y: float
    ) -> float:
        page.text("Invoice No:", MARGIN, y, font=FONT_BOLD)
        page.text(invoice_number, MARGIN + 95, y, width=page.width / 2 - MARGIN - 95)

        y_meta = y
        if order_id:
            y_meta += 18
            page.text("Order Ref:", MARGIN, y_meta, font=FONT_BOLD)
            page.text(str(order_id), MARGIN + 95, y_meta, width=page.width / 2 - MARGIN - 95)

        date_x = page.width - MARGIN - 160
        page.text("Date:", date_x, y, font=FONT_BOLD)
        page.text(issue_date.strftime("%d/%m/%Y"), date_x + 48, y)

        return max(y_meta + 18, y + 24)

    def _column_bounds(self, page: _Page) -> list[tuple[float, float]]:
        table_w = page.width - MARGIN * 2
        bounds = []
        x = MARGIN
        for column in self.columns:
            w = table_w * column.share
            bounds.append((x, w))
            x += w
        return bounds

    def _draw_table(
        self, page: _Page, totals: InvoiceTotals, currency: str, y: float
    ) -> tuple[float, int]:
        table_w = page.width - MARGIN * 2
        bounds = self._column_bounds(page)

        page.rect(MARGIN, y, table_w, TABLE_HEAD_HEIGHT, fill=GRAY, stroke=BORDER)
        for column, (x, w) in zip(self.columns, bounds, strict=True):
            page.text(
                column.title, x + CELL_PAD, y + 7, font=FONT_BOLD,
                width=w - CELL_PAD * 2, align=column.align,
            )

        row_y = y + TABLE_HEAD_HEIGHT
        bottom_safe = page.height - MARGIN - RESERVED_BOTTOM
        hidden = 0

        for i, row in enumerate(totals.rows):
            if row_y + ROW_HEIGHT > bottom_safe:
                hidden = len(totals.rows) - i
                page.text(
                    overflow_summary(hidden), MARGIN + CELL_PAD, row_y + 6,
                    size=9, font=FONT_ITALIC, color=MUTED, width=table_w - CELL_PAD * 2,
                )
                row_y += ROW_HEIGHT
                break

            shade = ZEBRA if i % 2 == 1 else None
            page.rect(MARGIN, row_y, table_w, ROW_HEIGHT, fill=shade, stroke=BORDER)
            if self.tax_enabled:
                percent = f"{row.tax_percent.quantize(Decimal('1'), rounding=ROUND_HALF_UP)}%"
            else:
                percent = "-"
            cells = (
                row.description,
                format_quantity(row.quantity),
                format_money(row.unit_ex_tax, currency),
                format_money(row.net, currency),
                percent,
            )
            for value, column, (x, w) in zip(cells, self.columns, bounds, strict=True):
                page.text(
                    value, x + CELL_PAD, row_y + 6, width=w - CELL_PAD * 2, align=column.align
                )
            row_y += ROW_HEIGHT

        return row_y, hidden

    def _draw_totals(self, page: _Page, totals: InvoiceTotals, currency: str, y: float) -> float:
        bounds = self._column_bounds(page)
        totals_x = bounds[2][0]
        totals_w = page.width - MARGIN - totals_x
        half = totals_w / 2

        lines = (
            ("Subtotal (Net)", totals.net_total, False),
            (self.settings.tax_label, totals.tax_total, False),
            ("Total", totals.grand_total, True),
        )
        y += 16
        for label, value, emphasised in lines:
            fill = GRAY if emphasised else white
            page.rect(totals_x, y, totals_w, TOTALS_ROW_HEIGHT, fill=fill, stroke=BORDER)
            font = FONT_BOLD if emphasised else FONT
            page.text(label, totals_x + CELL_PAD, y + 7, font=font, width=half - CELL_PAD)
            page.text(
                format_money(value, currency), totals_x + half, y + 7,
                font=font, width=half - CELL_PAD, align="right",
            )
            y += TOTALS_ROW_HEIGHT
        return y

    def _draw_notes(self, page: _Page, notes: str, y: float) -> None:
        y += 18
        notes_max_y = page.height - MARGIN - NOTES_BOTTOM
        page.text("Notes", MARGIN, y, font=FONT_BOLD)

        ny = y + 14
        for line in wrap_notes(notes):
            if ny + LINE_HEIGHT > notes_max_y:
                logger.warning("Invoice notes truncated to fit above the footer")
                break
            page.text(line, MARGIN, ny, color=NOTES_TEXT, width=page.width - MARGIN * 2)
            ny += LINE_HEIGHT

    def _draw_footer(self, page: _Page) -> None:
        footer_y = page.height - MARGIN - FOOTER_OFFSET
        page.text(
            self.issuer.footer_text(self.settings.tax_label), MARGIN, footer_y,
            size=9, color=MUTED, width=page.width - MARGIN * 2, align="center",
        )


def overflow_summary(hidden: int) -> str:
    """Placeholder line for rows that did not fit."""
    return f"(+{hidden} more item{'s' if hidden != 1 else ''} not shown)"


def wrap_notes(notes: str, width: int = NOTES_WRAP_CHARS) -> list[str]:
    """Split notes into lines of at most ``width`` characters, keeping blank lines."""
    lines: list[str] = []
    for paragraph in notes.replace("\r\n", "\n").split("\n"):
        lines.extend(textwrap.wrap(paragraph, width=width) or [""])
    return lines
