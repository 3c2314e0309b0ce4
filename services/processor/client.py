"""Payment processor client for secondary lookups.

Wraps the Stripe SDK. Used when an event only references a payment by id
and when a checkout session's purchased rows are needed for the invoice.
"""

import logging
from typing import Any

import stripe
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings
from services.webhooks.events import ProcessorLineItem, ProcessorPayment

logger = logging.getLogger(__name__)

LINE_ITEM_LIMIT = 100


def _to_dict(obj: Any) -> dict[str, Any]:
    return obj.to_dict() if hasattr(obj, "to_dict") else dict(obj)


class ProcessorClient:
    """Read-only access to processor payments and checkout line items."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def is_available(self) -> bool:
        """True when an API key is configured."""
        return bool(self.settings.processor_api_key)

    @retry(
        retry=retry_if_exception_type(stripe.APIConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _retrieve_payment_intent(self, payment_id: str) -> Any:
        return stripe.PaymentIntent.retrieve(
            payment_id,
            api_key=self.settings.processor_api_key,
            expand=["latest_charge"],
        )

    @retry(
        retry=retry_if_exception_type(stripe.APIConnectionError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _list_session_line_items(self, session_id: str) -> Any:
        return stripe.checkout.Session.list_line_items(
            session_id,
            limit=LINE_ITEM_LIMIT,
            expand=["data.price.product"],
            api_key=self.settings.processor_api_key,
        )

    def retrieve_payment(self, payment_id: str) -> ProcessorPayment | None:
        """Look up a payment by id.

        Returns:
            ProcessorPayment, or None if unavailable or the lookup failed
        """
        if not self.is_available():
            logger.warning(f"Processor API key not configured; cannot resolve payment {payment_id}")
            return None
        try:
            return ProcessorPayment.from_object(_to_dict(self._retrieve_payment_intent(payment_id)))
        except stripe.StripeError as e:
            logger.error(f"Processor lookup failed for payment {payment_id}: {e}")
            return None

    def list_line_items(self, session_id: str) -> list[ProcessorLineItem]:
        """Purchased rows of a checkout session (empty on failure)."""
        if not self.is_available():
            logger.warning(f"Processor API key not configured; no line items for {session_id}")
            return []
        try:
            page = _to_dict(self._list_session_line_items(session_id))
        except stripe.StripeError as e:
            logger.error(f"Processor line item lookup failed for session {session_id}: {e}")
            return []
        return [ProcessorLineItem.from_object(row) for row in page.get("data", [])]
