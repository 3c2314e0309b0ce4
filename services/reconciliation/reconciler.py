"""Order reconciliation: tie a payment event to an internal order.

Resolves the order id, moves the order to paid, and writes the
payment-reconciliation row. The paid transition is idempotent so
redelivered or concurrent events for the same order converge.
"""

import logging
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from services.ledger.database import Database, dialect_insert
from services.ledger.models import PaymentRecord
from services.ledger.orders import OrderLedger
from services.ledger.schema import Order
from services.processor.client import ProcessorClient
from services.shared.errors import OrderUpdateFailure
from services.webhooks.events import PaymentEvent, ProcessorPayment

logger = logging.getLogger(__name__)

ORDER_ID_KEY = "order_id"


class OrderReconciler:
    """Resolves, updates and reads orders for payment events."""

    def __init__(
        self,
        orders: OrderLedger,
        database: Database,
        processor: ProcessorClient,
    ) -> None:
        self.orders = orders
        self.database = database
        self.processor = processor

    def resolve_payment(self, event: PaymentEvent) -> ProcessorPayment | None:
        """Nested payment for the event, looked up at the processor if only an id is given."""
        ref = event.payment_reference
        if isinstance(ref, str):
            return self.processor.retrieve_payment(ref)
        return ref

    def resolve_order_id(
        self, event: PaymentEvent, payment: ProcessorPayment | None = None
    ) -> str | None:
        """Find the internal order the event pays for.

        Order: the event's own metadata, then the nested payment's metadata.

        Args:
            event: Verified payment event
            payment: Already-resolved nested payment, to avoid a second lookup

        Returns:
            Order id, or None if the event carries no resolvable order
        """
        order_id = event.metadata.get(ORDER_ID_KEY)
        if order_id:
            return order_id

        if payment is None:
            payment = self.resolve_payment(event)
        if payment is not None:
            return payment.metadata.get(ORDER_ID_KEY) or None
        return None

    def mark_paid(
        self,
        order_id: str,
        paid_at: datetime,
        *,
        session_id: str | None = None,
        payment_id: str | None = None,
    ) -> bool:
        """Idempotently move the order to paid.

        Returns:
            True if the order exists and is now paid

        Raises:
            OrderUpdateFailure: If the ledger write fails
        """
        try:
            return self.orders.mark_paid(
                order_id, paid_at, session_id=session_id, payment_id=payment_id
            )
        except SQLAlchemyError as e:
            raise OrderUpdateFailure(
                f"Order ledger update failed: {e}", order_id=order_id
            ) from e

    def fetch_order(self, order_id: str) -> Order | None:
        """Preferred source of invoice content; absence falls back to event data."""
        try:
            return self.orders.get(order_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to read order {order_id}: {e}")
            return None

    def record_payment(
        self,
        event: PaymentEvent,
        payment: ProcessorPayment | None,
        order_id: str | None,
        default_currency: str = "GBP",
    ) -> bool:
        """Write the payment-reconciliation row.

        Upserts by processor payment id when one is known, otherwise inserts.
        Never raises; a failed write only loses the denormalized record.

        Returns:
            True if the row was written
        """
        if payment is not None:
            amount = payment.captured_amount
            currency = payment.currency or event.currency
            status = payment.status or "succeeded"
            email = payment.email
            meta = payment.metadata or None
        else:
            amount = event.amount_total or 0
            currency = event.currency
            status = event.object.get("payment_status") or "succeeded"
            email = event.customer_email or event.metadata_email
            meta = event.metadata or None

        values = {
            "payment_id": payment.id if payment is not None else None,
            "session_id": event.session_id,
            "order_id": order_id,
            "amount": amount,
            "currency": (currency or default_currency).upper(),
            "status": status,
            "email": email,
            "meta": meta,
        }

        try:
            with self.database.session_scope() as session:
                if values["payment_id"]:
                    stmt = dialect_insert(session, PaymentRecord.__table__).values(**values)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=["payment_id"],
                        set_={
                            k: v for k, v in values.items() if k != "payment_id" and v is not None
                        },
                    )
                    session.execute(stmt)
                else:
                    session.add(PaymentRecord(**values))
            return True
        except Exception as e:
            logger.warning(
                f"Payment reconciliation write failed for event {event.id} "
                f"(order {order_id}): {e}"
            )
            return False
