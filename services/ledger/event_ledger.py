"""Event ledger: audit store of every received payment event.

Records each event id once, whatever happens downstream. It exists for
audit and replay, not as the idempotency guard for financial side effects;
that role belongs to the idempotent order update and the overwrite-stable
storage path. Write failures are logged and swallowed.
"""

import logging

from pydantic import BaseModel

from services.ledger.database import Database, dialect_insert
from services.ledger.models import WebhookEventRecord, WebhookLogRecord

logger = logging.getLogger(__name__)


class EventRecordResult(BaseModel):
    """Outcome of recording an event.

    Attributes:
        is_new: True if this is the first time the event id was seen
        recorded: False if the ledger write itself failed
        error: Error message if the write failed
    """

    is_new: bool
    recorded: bool = True
    error: str | None = None


class EventLedger:
    """Idempotent event store plus the per-stage audit log."""

    def __init__(self, database: Database) -> None:
        self.database = database

    def record_event(self, event_id: str, event_type: str, raw_payload: str) -> EventRecordResult:
        """Insert the event unless its id is already present.

        Args:
            event_id: Processor event identifier
            event_type: Processor event type
            raw_payload: Verbatim request body

        Returns:
            EventRecordResult; never raises
        """
        try:
            with self.database.session_scope() as session:
                stmt = (
                    dialect_insert(session, WebhookEventRecord.__table__)
                    .values(id=event_id, type=event_type, raw=raw_payload)
                    .on_conflict_do_nothing(index_elements=["id"])
                )
                result = session.execute(stmt)
                is_new = result.rowcount == 1

            if is_new:
                logger.info(f"Recorded event {event_id} ({event_type})")
            else:
                logger.info(f"Event {event_id} already recorded; processing redelivery")
            return EventRecordResult(is_new=is_new)

        except Exception as e:
            logger.error(f"Failed to record event {event_id} ({event_type}): {e}")
            return EventRecordResult(is_new=False, recorded=False, error=str(e))

    def is_recorded(self, event_id: str) -> bool:
        """Check whether an event id has been recorded."""
        with self.database.session_scope() as session:
            return session.get(WebhookEventRecord, event_id) is not None

    def log_stage(
        self,
        event_type: str,
        *,
        event_id: str | None = None,
        order_id: str | None = None,
        status: str | None = None,
        error: str | None = None,
    ) -> None:
        """Append a stage outcome to the audit log. Failures are swallowed."""
        try:
            with self.database.session_scope() as session:
                session.add(
                    WebhookLogRecord(
                        event_id=event_id,
                        event_type=event_type,
                        order_id=order_id,
                        status=status,
                        error=error,
                    )
                )
        except Exception as e:
            logger.warning(f"Failed to write audit log '{event_type}' for event {event_id}: {e}")
