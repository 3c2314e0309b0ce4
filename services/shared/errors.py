"""Error taxonomy for the payment-event-to-invoice pipeline.

Only InvalidSignature changes the response of the inbound event endpoint.
Every other error is logged with its stage context and absorbed by the
orchestrator so the upstream sender does not keep redelivering.
"""


class PipelineError(Exception):
    """Base class for pipeline failures.

    Attributes:
        stage: Pipeline stage that failed
        event_id: Payment event being processed, if any
        order_id: Order the failure relates to, if resolved
    """

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        *,
        event_id: str | None = None,
        order_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.event_id = event_id
        self.order_id = order_id

    def context(self) -> str:
        """Log-friendly description of where the failure happened."""
        return f"stage={self.stage} event={self.event_id or '-'} order={self.order_id or '-'}"


class InvalidSignature(PipelineError):
    """Signature header missing, malformed, stale or not matching the body."""

    stage = "signature"


class OrderResolutionFailure(PipelineError):
    """Event could not be tied to a known order; invoice falls back to event data."""

    stage = "reconcile"


class OrderUpdateFailure(PipelineError):
    """Order ledger write failed; needs manual reconciliation."""

    stage = "mark_paid"


class PriceLookupFailure(PipelineError):
    """No usable pricing data anywhere in the fallback chain."""

    stage = "build_items"


class RenderFailure(PipelineError):
    """Document layout or encoding failed; nothing is stored."""

    stage = "render"


class DeliveryFailure(PipelineError):
    """Storage or email delivery failed for one channel."""

    stage = "deliver"

    def __init__(self, message: str, *, channel: str, **kwargs: str | None) -> None:
        super().__init__(message, **kwargs)
        self.channel = channel
