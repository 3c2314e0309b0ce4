"""Invoice construction: totals, rendering and delivery behind one call.

Used in-process by the payment event pipeline and over HTTP by the invoice
endpoint.
"""

import logging
import time
from datetime import UTC, datetime

from services.api import metrics
from services.delivery.dispatcher import DeliveryDispatcher
from services.invoicing.schema import BuiltInvoice, InvoiceOutcome, InvoiceRequest
from services.invoicing.totals import compute_totals_for
from services.rendering.pdf import InvoiceRenderer
from services.shared.config import Settings
from services.shared.errors import RenderFailure

logger = logging.getLogger(__name__)


def fallback_invoice_number(now: datetime) -> str:
    """Timestamp-derived invoice number used when the caller supplies none."""
    return f"INV-{int(now.timestamp())}"


class InvoiceService:
    """Builds invoice documents and hands them to the dispatcher."""

    def __init__(
        self,
        settings: Settings,
        renderer: InvoiceRenderer,
        dispatcher: DeliveryDispatcher,
    ) -> None:
        self.settings = settings
        self.renderer = renderer
        self.dispatcher = dispatcher

    def render(self, request: InvoiceRequest, now: datetime | None = None) -> BuiltInvoice:
        """Compute totals and render the PDF without delivering it.

        Raises:
            ValueError: If the request has no items
            RenderFailure: If rendering fails
        """
        if not request.items:
            raise ValueError("No items in payload")

        now = now or datetime.now(UTC)
        meta = request.meta
        totals = compute_totals_for(request.items, self.settings)
        invoice_number = meta.invoice_number or fallback_invoice_number(now)

        start = time.time()
        try:
            built = self.renderer.render(
                customer=request.customer,
                totals=totals,
                currency=request.currency.upper(),
                invoice_number=invoice_number,
                issue_date=meta.issue_date or now.date(),
                order_id=meta.order_id,
                notes=meta.notes,
            )
        except RenderFailure:
            metrics.invoices_rendered_total.labels(status="failed").inc()
            raise
        metrics.invoice_render_duration_seconds.observe(time.time() - start)
        metrics.invoices_rendered_total.labels(status="success").inc()
        return built

    def create_invoice(
        self, request: InvoiceRequest, now: datetime | None = None
    ) -> InvoiceOutcome:
        """Render the invoice, store it and email it.

        Never raises; render errors come back as an unsuccessful outcome and
        nothing is stored for them.
        """
        now = now or datetime.now(UTC)
        try:
            built = self.render(request, now)
        except (ValueError, RenderFailure) as e:
            if isinstance(e, RenderFailure):
                e.order_id = request.meta.order_id
                logger.error(f"{e} ({e.context()})")
            return InvoiceOutcome(success=False, error=str(e))

        meta = request.meta
        routing_date = meta.routing_date or meta.issue_date or now.date()
        delivery = self.dispatcher.deliver(
            built,
            routing_date,
            request.customer.email,
            customer_name=request.customer.name,
            currency=request.currency.upper(),
            send_email=request.email,
            order_id=meta.order_id,
        )

        for channel, done in (("storage", delivery.stored), ("email", delivery.emailed)):
            failed = any(err.startswith(f"{channel}:") for err in delivery.errors)
            status = "success" if done else "failed" if failed else "skipped"
            metrics.invoice_deliveries_total.labels(channel=channel, status=status).inc()

        return InvoiceOutcome(
            success=True,
            invoice_number=built.invoice_number,
            document_path=delivery.storage_path if delivery.stored else None,
            page_count=built.page_count,
            total=built.total,
            stored=delivery.stored,
            emailed=delivery.emailed,
            email_id=delivery.email_id,
            error="; ".join(delivery.errors) or None,
        )
