"""Delivery dispatcher: store the invoice and email it to the billing contact.

Storage key: ``{email lower}/{YYYY}/{MM}/{invoice number}.pdf``. Re-delivering
the same invoice overwrites the same object instead of adding another.
Storage and email are attempted independently; a failure in one is logged
and never affects the other or the order's paid status.
"""

import html
import logging
from datetime import date, datetime

from pydantic import BaseModel, Field

from services.delivery.email import EmailAttachment, EmailService
from services.invoicing.schema import BuiltInvoice
from services.ledger.schema import Order
from services.shared.config import Settings
from services.shared.errors import DeliveryFailure
from services.storage.service import PDF_CONTENT_TYPE, StorageService
from services.webhooks.events import PaymentEvent

logger = logging.getLogger(__name__)

# Folder for invoices whose customer email could not be resolved
UNASSIGNED_SEGMENT = "_unassigned"


class DeliveryResult(BaseModel):
    """Per-channel delivery outcome."""

    stored: bool = False
    emailed: bool = False
    storage_path: str | None = None
    email_id: str | None = None
    errors: list[str] = Field(default_factory=list)


def invoice_object_path(
    email: str | None, routing_date: date, invoice_number: str, ext: str = "pdf"
) -> str:
    """Deterministic storage key for an invoice."""
    segment = (email or "").strip().lower() or UNASSIGNED_SEGMENT
    return f"{segment}/{routing_date.year:04d}/{routing_date.month:02d}/{invoice_number}.{ext}"


def resolve_recipient(order: Order | None, event: PaymentEvent | None) -> str | None:
    """Billing email: order, then the processor's customer details, then event metadata."""
    candidates = [
        order.customer_email if order is not None else None,
        event.customer_email if event is not None else None,
        event.metadata_email if event is not None else None,
    ]
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return None


def resolve_routing_date(
    order: Order | None, event: PaymentEvent | None, processed_at: datetime
) -> date:
    """Folder date: order delivery date, then event metadata date, then processing time."""
    if order is not None and order.delivery_date is not None:
        return order.delivery_date
    if event is not None and event.metadata_date is not None:
        return event.metadata_date
    return processed_at.date()


def invoice_email_subject(prefix: str, built: BuiltInvoice, currency: str) -> str:
    return f"{prefix} Invoice {built.invoice_number} · Total {currency} {built.total:.2f}".strip()


def invoice_email_html(customer_name: str | None, issuer_name: str) -> str:
    name = html.escape(customer_name or "Customer")
    return (
        f"<p>Hello {name},</p>"
        f"<p>Please find your invoice from {html.escape(issuer_name)} attached.</p>"
        '<p style="font-size:12px;color:#888">This is an automated message.</p>'
    )


class DeliveryDispatcher:
    """Persists rendered invoices and emails them."""

    def __init__(self, settings: Settings, storage: StorageService, email: EmailService) -> None:
        self.settings = settings
        self.storage = storage
        self.email = email

    def deliver(
        self,
        built: BuiltInvoice,
        routing_date: date,
        recipient: str | None,
        *,
        customer_name: str | None = None,
        currency: str = "GBP",
        send_email: bool = True,
        order_id: str | None = None,
    ) -> DeliveryResult:
        """Store the document and, if a recipient is known, email it.

        Never raises; per-channel failures are logged and listed in ``errors``.
        """
        result = DeliveryResult()
        object_name = invoice_object_path(recipient, routing_date, built.invoice_number)
        result.storage_path = object_name

        if self.storage.is_available():
            if self.storage.object_exists(object_name):
                logger.info(f"Invoice {object_name} already stored; overwriting")
            metadata = {"invoice-number": built.invoice_number}
            if order_id:
                metadata["order-id"] = order_id
            stored = self.storage.upload_bytes(
                data=built.content,
                object_name=object_name,
                content_type=PDF_CONTENT_TYPE,
                metadata=metadata,
            )
            if stored.success:
                result.stored = True
            else:
                self._failed(result, "storage", stored.error, order_id)
        else:
            logger.info(f"Storage disabled; invoice {built.invoice_number} not persisted")

        if not send_email:
            logger.info(f"Email not requested for invoice {built.invoice_number}")
        elif not recipient:
            logger.warning(f"No recipient for invoice {built.invoice_number}; not emailed")
        else:
            sent = self.email.send(
                to=[recipient],
                subject=invoice_email_subject(self.settings.email_subject_prefix, built, currency),
                html=invoice_email_html(customer_name, self.settings.issuer_name),
                attachments=[EmailAttachment(filename=built.filename, content=built.content)],
                bcc=self.settings.email_bcc_list or None,
            )
            if sent.success:
                result.emailed = True
                result.email_id = sent.message_id
            else:
                self._failed(result, "email", sent.error, order_id)

        return result

    @staticmethod
    def _failed(
        result: DeliveryResult, channel: str, error: str | None, order_id: str | None
    ) -> None:
        failure = DeliveryFailure(error or "unknown error", channel=channel, order_id=order_id)
        logger.error(f"Invoice {channel} delivery failed ({failure.context()}): {failure}")
        result.errors.append(f"{channel}: {failure}")
