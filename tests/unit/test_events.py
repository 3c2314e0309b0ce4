"""Unit tests for payment event parsing."""

import json
from collections.abc import Callable
from datetime import date

import pytest

from services.webhooks.events import (
    InvalidPayload,
    PaymentEvent,
    ProcessorLineItem,
    ProcessorPayment,
)


class TestParse:
    """Parsing verified bodies."""

    def test_parse_keeps_raw_payload(self, event_body: Callable[..., bytes]) -> None:
        """Should keep the body verbatim for the audit ledger."""
        body = event_body()

        event = PaymentEvent.parse(body)

        assert event.id == "evt_1"
        assert event.type == "checkout.session.completed"
        assert event.raw_payload == body.decode("utf-8")

    @pytest.mark.parametrize("body", [b"not json", b"[]", b'{"type": "x"}', b"\xff\xfe"])
    def test_invalid_payload(self, body: bytes) -> None:
        """Should raise InvalidPayload for bodies that are not event objects."""
        with pytest.raises(InvalidPayload):
            PaymentEvent.parse(body)


class TestSessionEvents:
    """checkout.session.completed accessors."""

    def test_session_fields(self, event_body: Callable[..., bytes]) -> None:
        """Should expose session id, amount, currency and customer details."""
        event = PaymentEvent.parse(event_body())

        assert event.is_handled is True
        assert event.is_session is True
        assert event.session_id == "cs_1"
        assert event.amount_total == 183000
        assert event.currency == "GBP"
        assert event.customer_email == "buyer@example.com"
        assert event.customer_name == "Buyer Ltd"
        assert event.metadata == {"order_id": "ord_1"}

    def test_expanded_payment_reference(self, event_body: Callable[..., bytes]) -> None:
        """Should build the nested payment when it is expanded inline."""
        event = PaymentEvent.parse(event_body())

        ref = event.payment_reference

        assert isinstance(ref, ProcessorPayment)
        assert ref.id == "pi_1"

    def test_string_payment_reference(self, event_body: Callable[..., bytes]) -> None:
        """Should return the bare id when the payment is not expanded."""
        event = PaymentEvent.parse(event_body(obj={"id": "cs_2", "payment_intent": "pi_9"}))

        assert event.payment_reference == "pi_9"

    def test_metadata_values_stringified(self, event_body: Callable[..., bytes]) -> None:
        """Should coerce metadata values to strings and drop nulls."""
        obj = {"id": "cs_3", "metadata": {"litres": 500, "note": None}}
        event = PaymentEvent.parse(event_body(obj=obj))

        assert event.metadata == {"litres": "500"}

    def test_metadata_date(self, event_body: Callable[..., bytes]) -> None:
        """Should parse an ISO delivery date from metadata and ignore junk."""
        good = PaymentEvent.parse(
            event_body(obj={"id": "cs", "metadata": {"delivery_date": "2025-03-14T09:00"}})
        )
        bad = PaymentEvent.parse(
            event_body(obj={"id": "cs", "metadata": {"delivery_date": "next tuesday"}})
        )

        assert good.metadata_date == date(2025, 3, 14)
        assert bad.metadata_date is None


class TestPaymentEvents:
    """payment_intent.succeeded accessors."""

    def test_payment_event_is_its_own_payment(self, event_body: Callable[..., bytes]) -> None:
        """Should treat the event object as the payment."""
        obj = {
            "id": "pi_5",
            "amount": 5000,
            "amount_received": 4500,
            "currency": "eur",
            "receipt_email": "r@example.com",
            "metadata": {"order_id": "ord_5"},
            "shipping": {"name": "Site Office"},
        }
        event = PaymentEvent.parse(event_body(event_type="payment_intent.succeeded", obj=obj))

        ref = event.payment_reference
        assert isinstance(ref, ProcessorPayment)
        assert ref.captured_amount == 4500
        assert event.session_id is None
        assert event.amount_total == 4500
        assert event.currency == "EUR"
        assert event.customer_email == "r@example.com"
        assert event.customer_name == "Site Office"

    def test_unhandled_type(self, event_body: Callable[..., bytes]) -> None:
        """Should flag types the pipeline does not process."""
        event = PaymentEvent.parse(event_body(event_type="customer.created", obj={"id": "cus"}))

        assert event.is_handled is False


class TestProcessorModels:
    """Processor-side objects."""

    def test_payment_email_fallbacks(self) -> None:
        """Should prefer receipt email, then metadata, then the charge billing email."""
        payment = ProcessorPayment.from_object(
            {
                "id": "pi_1",
                "latest_charge": {"billing_details": {"email": "bill@example.com"}},
            }
        )
        assert payment.email == "bill@example.com"

        payment = ProcessorPayment.from_object(
            {"id": "pi_1", "metadata": {"customer_email": "meta@example.com"}}
        )
        assert payment.email == "meta@example.com"

    def test_line_item_reads_expanded_product(self) -> None:
        """Should read the product name and merge product and price metadata."""
        row = json.loads(
            """{
                "description": "Diesel",
                "quantity": 2,
                "amount_total": 36600,
                "price": {
                    "unit_amount": 18300,
                    "metadata": {"litres": "200"},
                    "product": {"name": "Red Diesel", "metadata": {"litres": "100", "grade": "B"}}
                }
            }"""
        )

        item = ProcessorLineItem.from_object(row)

        assert item.product_name == "Red Diesel"
        assert item.unit_amount == 18300
        assert item.metadata == {"litres": "200", "grade": "B"}
