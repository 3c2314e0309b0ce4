"""Order ledger access: read an order, move it to paid."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, update

from services.ledger.database import Database
from services.ledger.models import OrderRecord
from services.ledger.schema import Order

logger = logging.getLogger(__name__)


class OrderLedger:
    """Reads and updates orders; never creates or deletes them."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def get(self, order_id: str) -> Order | None:
        """Fetch an order by id.

        Returns:
            Order read model, or None if no row exists
        """
        with self.database.session_scope() as session:
            row = session.get(OrderRecord, order_id)
            return Order.model_validate(row) if row is not None else None

    def mark_paid(
        self,
        order_id: str,
        paid_at: datetime,
        *,
        session_id: str | None = None,
        payment_id: str | None = None,
    ) -> bool:
        """Set the order's status to paid in a single UPDATE.

        The first recorded ``paid_at`` is kept, so repeated calls converge on
        the same final row. Processor references are only written when given.

        Returns:
            True if an order row matched, False if the id is unknown

        Raises:
            SQLAlchemyError: If the database write fails
        """
        values: dict[str, Any] = {
            "status": "paid",
            "paid_at": func.coalesce(OrderRecord.paid_at, paid_at),
        }
        if session_id:
            values["processor_session_id"] = session_id
        if payment_id:
            values["processor_payment_id"] = payment_id

        with self.database.session_scope() as session:
            result = session.execute(
                update(OrderRecord).where(OrderRecord.id == order_id).values(**values)
            )
            matched = result.rowcount > 0

        if matched:
            logger.info(f"Order {order_id} marked paid")
        else:
            logger.warning(f"Order {order_id} not found; status not updated")
        return matched
