"""Transactional email delivery over an HTTP email API (Resend-compatible).

Sends one message with a base64-encoded attachment. Transient transport
errors are retried with exponential backoff; API rejections are returned as
a failed EmailResult, never raised.

API reference: https://resend.com/docs/api-reference/emails/send-email
"""

import base64
import logging

import httpx
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class EmailAttachment(BaseModel):
    filename: str
    content: bytes
    content_type: str = "application/pdf"


class EmailResult(BaseModel):
    """Result of an email send.

    Attributes:
        success: Whether the API accepted the message
        message_id: Provider message id if accepted
        error: Error message if sending failed
    """

    success: bool
    message_id: str | None = None
    error: str | None = None


def _message_id(response: httpx.Response) -> str | None:
    """Provider message id, if the accepted response carries a JSON body with one."""
    if not response.headers.get("content-type", "").startswith("application/json"):
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("id") if isinstance(body, dict) else None


class EmailService:
    """Sends invoice emails through the configured HTTP email API."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        self.settings = settings
        self._client = client or httpx.Client(timeout=30.0)

    def is_available(self) -> bool:
        """True when an API key and sender are configured."""
        return bool(self.settings.email_api_key and self.settings.email_from)

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        wait=wait_exponential_jitter(initial=1, max=10),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _post_with_retry(self, payload: dict) -> httpx.Response:
        return self._client.post(
            self.settings.email_api_url,
            json=payload,
            headers={"Authorization": f"Bearer {self.settings.email_api_key}"},
        )

    def send(
        self,
        to: list[str],
        subject: str,
        html: str,
        attachments: list[EmailAttachment] | None = None,
        bcc: list[str] | None = None,
    ) -> EmailResult:
        """Send one email.

        Returns:
            EmailResult with the provider message id or an error
        """
        if not self.is_available():
            return EmailResult(success=False, error="Email API key or sender not configured")
        if not to:
            return EmailResult(success=False, error="No recipients")

        payload: dict = {
            "from": self.settings.email_from,
            "to": to,
            "subject": subject,
            "html": html,
        }
        if bcc:
            payload["bcc"] = bcc
        if attachments:
            payload["attachments"] = [
                {
                    "filename": a.filename,
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "content_type": a.content_type,
                }
                for a in attachments
            ]

        try:
            response = self._post_with_retry(payload)
            response.raise_for_status()
            message_id = _message_id(response)
            logger.info(f"Email '{subject}' accepted for {len(to)} recipient(s) (id={message_id})")
            return EmailResult(success=True, message_id=message_id)

        except httpx.HTTPStatusError as e:
            logger.error(
                f"Email API rejected '{subject}': {e.response.status_code} {e.response.text}"
            )
            return EmailResult(
                success=False,
                error=f"Email API error: {e.response.status_code}",
            )
        except Exception as e:
            logger.error(f"Email sending failed for '{subject}': {e}")
            return EmailResult(success=False, error=str(e))
