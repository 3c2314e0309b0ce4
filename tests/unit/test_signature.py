"""Unit tests for payment event signature verification."""

import time
from collections.abc import Callable
from unittest.mock import patch

import pytest
import stripe

from services.shared.config import Settings
from services.shared.errors import InvalidSignature
from services.webhooks.signature import SignatureVerifier

SECRET = "whsec_unit"
BODY = b'{"id": "evt_1", "type": "checkout.session.completed"}'


@pytest.fixture
def verifier() -> SignatureVerifier:
    return SignatureVerifier(SECRET, tolerance_seconds=300)


@pytest.fixture
def header_for(sign_body: Callable[..., str]) -> Callable[..., str]:
    """Signature header for a body, signed now with the unit secret by default."""

    def _header(body: bytes, secret: str = SECRET, timestamp: int | None = None) -> str:
        return sign_body(body, secret=secret, timestamp=timestamp)

    return _header


class TestValidSignatures:
    """Accepted signatures."""

    def test_matching_signature_passes(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should accept a signature computed over the exact body."""
        verifier.verify(BODY, header_for(BODY))

    def test_any_v1_signature_may_match(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should accept when one of several v1 signatures matches (secret rotation)."""
        timestamp, good = header_for(BODY).split(",")
        header = f"{timestamp},v1={'0' * 64},{good}"

        verifier.verify(BODY, header)

    def test_unknown_schemes_ignored(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should ignore signature schemes other than v1."""
        verifier.verify(BODY, header_for(BODY) + ",v0=deadbeef")

    def test_delegates_to_stripe_sdk(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should hand the decoded body, header, secret and tolerance to the SDK."""
        header = header_for(BODY)

        with patch.object(stripe.WebhookSignature, "verify_header") as verify_header:
            verifier.verify(BODY, header)

        verify_header.assert_called_once_with(BODY.decode("utf-8"), header, SECRET, 300)

    def test_from_settings(self) -> None:
        """Should take secret and tolerance from settings."""
        settings = Settings(webhook_secret=SECRET, webhook_tolerance_seconds=60)
        verifier = SignatureVerifier.from_settings(settings)

        assert verifier.secret == SECRET
        assert verifier.tolerance_seconds == 60


class TestRejectedSignatures:
    """Rejected requests."""

    def test_tampered_body_rejected(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should reject when the body differs from what was signed."""
        header = header_for(BODY)

        with pytest.raises(InvalidSignature, match="expected signature"):
            verifier.verify(BODY.replace(b"evt_1", b"evt_2"), header)

    def test_reserialized_body_rejected(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should reject a body re-encoded with different whitespace."""
        header = header_for(BODY)

        with pytest.raises(InvalidSignature):
            verifier.verify(BODY.replace(b": ", b":"), header)

    def test_wrong_secret_rejected(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should reject a signature made with another secret."""
        with pytest.raises(InvalidSignature):
            verifier.verify(BODY, header_for(BODY, secret="other"))

    @pytest.mark.parametrize("header", [None, ""])
    def test_missing_header_rejected(self, verifier: SignatureVerifier, header: str | None) -> None:
        """Should reject when the header is absent."""
        with pytest.raises(InvalidSignature, match="Missing"):
            verifier.verify(BODY, header)

    @pytest.mark.parametrize("header", ["garbage", "t=abc,v1=00", "v1=00", "t=1741000000"])
    def test_malformed_header_rejected(self, verifier: SignatureVerifier, header: str) -> None:
        """Should reject headers without a numeric timestamp and a v1 signature."""
        with pytest.raises(InvalidSignature):
            verifier.verify(BODY, header)

    def test_stale_timestamp_rejected(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should reject a correctly signed body outside the tolerance window."""
        header = header_for(BODY, timestamp=int(time.time()) - 301)

        with pytest.raises(InvalidSignature, match="tolerance"):
            verifier.verify(BODY, header)

    def test_non_utf8_body_rejected(
        self, verifier: SignatureVerifier, header_for: Callable[..., str]
    ) -> None:
        """Should reject a body that is not UTF-8 text."""
        body = b"\xff\xfe" + BODY

        with pytest.raises(InvalidSignature, match="UTF-8"):
            verifier.verify(body, header_for(body))

    def test_missing_secret_rejects_everything(self, header_for: Callable[..., str]) -> None:
        """Should reject all requests when no secret is configured."""
        verifier = SignatureVerifier("")

        with pytest.raises(InvalidSignature, match="not configured"):
            verifier.verify(BODY, header_for(BODY))

    def test_error_carries_signature_stage(self, verifier: SignatureVerifier) -> None:
        """Should report the signature stage in its context."""
        with pytest.raises(InvalidSignature) as exc_info:
            verifier.verify(BODY, None)

        assert "stage=signature" in exc_info.value.context()
