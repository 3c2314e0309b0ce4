"""Payment event pipeline.

Runs one verified event through the stages in order:

    event ledger -> order reconciler -> item builder -> totals/render -> delivery

Each stage may fail without undoing the stages before it. Only the order
status update is fatal for the event; everything else degrades (fallback
items, no email, no stored document) and is recorded in the audit log.
"""

import logging
from datetime import UTC, datetime

from pydantic import BaseModel

from services.api import metrics
from services.delivery.dispatcher import resolve_recipient, resolve_routing_date
from services.invoicing.items import build_items
from services.invoicing.schema import Customer, InvoiceMeta, InvoiceOutcome, InvoiceRequest
from services.invoicing.service import InvoiceService, fallback_invoice_number
from services.ledger.event_ledger import EventLedger
from services.ledger.schema import Order
from services.processor.client import ProcessorClient
from services.reconciliation.reconciler import OrderReconciler
from services.shared.config import Settings
from services.shared.errors import (
    OrderResolutionFailure,
    OrderUpdateFailure,
    PipelineError,
)
from services.webhooks.events import PaymentEvent, ProcessorLineItem

logger = logging.getLogger(__name__)


class PipelineOutcome(BaseModel):
    """What happened to one event.

    Attributes:
        event_id: Processor event id
        event_type: Processor event type
        is_new: False when the event id had been recorded before
        handled: False for event types the pipeline ignores
        order_id: Resolved internal order, if any
        marked_paid: Whether the order is now paid
        invoice: Invoice construction result, if it was attempted
        error: First fatal or degrading error, for the acknowledgement body
    """

    event_id: str
    event_type: str
    is_new: bool = True
    handled: bool = False
    order_id: str | None = None
    marked_paid: bool = False
    invoice: InvoiceOutcome | None = None
    error: str | None = None


class PaymentEventPipeline:
    """Orchestrates the stages for a verified payment event."""

    def __init__(
        self,
        settings: Settings,
        ledger: EventLedger,
        reconciler: OrderReconciler,
        processor: ProcessorClient,
        invoices: InvoiceService,
    ) -> None:
        self.settings = settings
        self.ledger = ledger
        self.reconciler = reconciler
        self.processor = processor
        self.invoices = invoices

    def process(self, event: PaymentEvent, now: datetime | None = None) -> PipelineOutcome:
        """Run the pipeline for one event. Never raises for stage failures."""
        now = now or datetime.now(UTC)
        recorded = self.ledger.record_event(event.id, event.type, event.raw_payload)
        outcome = PipelineOutcome(event_id=event.id, event_type=event.type, is_new=recorded.is_new)

        if not event.is_handled:
            logger.info(f"Ignoring event {event.id} of type {event.type}")
            metrics.payment_events_total.labels(event_type=event.type, outcome="ignored").inc()
            return outcome
        outcome.handled = True

        payment = self.reconciler.resolve_payment(event)
        order_id = self.reconciler.resolve_order_id(event, payment)
        order: Order | None = None

        if order_id:
            try:
                outcome.marked_paid = self.reconciler.mark_paid(
                    order_id,
                    now,
                    session_id=event.session_id,
                    payment_id=payment.id if payment is not None else None,
                )
            except OrderUpdateFailure as e:
                e.event_id = event.id
                self._stage_failed(event, e, "order_update_failed")
                outcome.order_id = order_id
                outcome.error = str(e)
                metrics.payment_events_total.labels(event_type=event.type, outcome="failed").inc()
                return outcome

            if outcome.marked_paid:
                self.ledger.log_stage(
                    "order_marked_paid", event_id=event.id, order_id=order_id, status="paid"
                )
                order = self.reconciler.fetch_order(order_id)
            else:
                self._stage_failed(
                    event,
                    OrderResolutionFailure(
                        "Order not found; invoicing from event data",
                        event_id=event.id,
                        order_id=order_id,
                    ),
                    "order_not_found",
                )
        else:
            self._stage_failed(
                event,
                OrderResolutionFailure("Event carries no order id", event_id=event.id),
                "order_unresolved",
            )

        outcome.order_id = order.id if order is not None else None
        self.reconciler.record_payment(
            event, payment, order_id, default_currency=self.settings.default_currency
        )

        request = self.build_request(event, order, self._processor_items(event, order), now)
        invoice = self.invoices.create_invoice(request, now=now)
        outcome.invoice = invoice

        if not invoice.success:
            metrics.pipeline_stage_failures_total.labels(stage="render").inc()
            self.ledger.log_stage(
                "invoice_failed",
                event_id=event.id,
                order_id=outcome.order_id,
                status="error",
                error=invoice.error,
            )
            outcome.error = invoice.error
            metrics.payment_events_total.labels(event_type=event.type, outcome="failed").inc()
            return outcome

        if invoice.error:
            metrics.pipeline_stage_failures_total.labels(stage="deliver").inc()
            outcome.error = invoice.error
        self.ledger.log_stage(
            "invoice_sent" if invoice.emailed else "invoice_created",
            event_id=event.id,
            order_id=outcome.order_id,
            status="ok" if not invoice.error else "partial",
            error=invoice.error,
        )
        logger.info(
            f"Event {event.id} processed: invoice {invoice.invoice_number} "
            f"stored={invoice.stored} emailed={invoice.emailed}"
        )
        metrics.payment_events_total.labels(event_type=event.type, outcome="processed").inc()
        return outcome

    def _processor_items(self, event: PaymentEvent, order: Order | None) -> list[ProcessorLineItem]:
        """Processor rows, only fetched when the order cannot price the invoice itself."""
        if not event.is_session or event.session_id is None:
            return []
        if order is not None and order.is_priced:
            return []
        return self.processor.list_line_items(event.session_id)

    def build_request(
        self,
        event: PaymentEvent,
        order: Order | None,
        processor_items: list[ProcessorLineItem],
        now: datetime,
    ) -> InvoiceRequest:
        """Assemble the invoice request from the order, the event and processor rows."""
        items = build_items(
            order, processor_items, event.metadata, event.amount_total, event_id=event.id
        )
        customer = Customer(
            name=event.customer_name or (order.customer_name if order else None) or "Customer",
            email=resolve_recipient(order, event),
            address_line1=order.address_line1 if order else None,
            address_line2=order.address_line2 if order else None,
            city=order.city if order else None,
            postcode=order.postcode if order else None,
        )
        meta = InvoiceMeta(
            invoice_number=f"INV-{order.id}" if order else fallback_invoice_number(now),
            order_id=order.id if order else None,
            notes=order.notes if order else None,
            issue_date=now.date(),
            routing_date=resolve_routing_date(order, event, now),
        )
        return InvoiceRequest(
            customer=customer,
            items=items,
            currency=event.currency or self.settings.default_currency,
            meta=meta,
        )

    def _stage_failed(self, event: PaymentEvent, error: PipelineError, audit_type: str) -> None:
        fatal = isinstance(error, OrderUpdateFailure)
        message = f"{error} ({error.context()})"
        if fatal:
            logger.error(f"{message}; order needs manual reconciliation")
        else:
            logger.warning(message)
        metrics.pipeline_stage_failures_total.labels(stage=error.stage).inc()
        self.ledger.log_stage(
            audit_type,
            event_id=event.id,
            order_id=error.order_id,
            status="error" if fatal else "warning",
            error=str(error),
        )
