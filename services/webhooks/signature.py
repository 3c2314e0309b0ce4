"""Signature verification for inbound payment events.

The processor signs ``"<timestamp>." + body`` and sends
``Stripe-Signature: t=<timestamp>,v1=<hex>[,v1=<hex>...]``. The Stripe SDK
checks the header against the body exactly as received; nothing is parsed
or re-encoded before verification.
"""

import logging

import stripe

from services.shared.config import Settings
from services.shared.errors import InvalidSignature

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"


class SignatureVerifier:
    """Authenticates event bodies against the shared webhook secret."""

    def __init__(self, secret: str, tolerance_seconds: int = 300) -> None:
        self.secret = secret
        self.tolerance_seconds = tolerance_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "SignatureVerifier":
        return cls(settings.webhook_secret, settings.webhook_tolerance_seconds)

    def verify(self, raw_body: bytes, header: str | None) -> None:
        """Check the signature header against the exact request bytes.

        Args:
            raw_body: Request body exactly as received
            header: Signature header value

        Raises:
            InvalidSignature: On a missing secret, missing or malformed header,
                stale timestamp, or no matching signature
        """
        if not self.secret:
            raise InvalidSignature("Webhook secret not configured")
        if not header:
            raise InvalidSignature(f"Missing {SIGNATURE_HEADER} header")

        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"), header, self.secret, self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Payment event signature rejected: {e}")
            raise InvalidSignature(str(e)) from e
        except UnicodeDecodeError as e:
            raise InvalidSignature("Event body is not valid UTF-8") from e
