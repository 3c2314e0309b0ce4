"""Unit tests for InvoiceService (render + deliver boundary)."""

from datetime import UTC, date, datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from services.delivery.dispatcher import DeliveryDispatcher, DeliveryResult
from services.invoicing.schema import Customer, InvoiceLineItem, InvoiceMeta, InvoiceRequest
from services.invoicing.service import InvoiceService
from services.rendering.pdf import InvoiceRenderer
from services.shared.config import Settings
from services.shared.errors import RenderFailure

NOW = datetime(2025, 3, 14, 9, 30, tzinfo=UTC)


@pytest.fixture
def dispatcher() -> MagicMock:
    mock = MagicMock(spec=DeliveryDispatcher)
    mock.deliver.return_value = DeliveryResult(
        stored=True,
        emailed=True,
        storage_path="buyer@example.com/2025/03/INV-ord_1.pdf",
        email_id="msg_1",
    )
    return mock


@pytest.fixture
def service(settings: Settings, dispatcher: MagicMock) -> InvoiceService:
    return InvoiceService(settings, InvoiceRenderer(settings), dispatcher)


@pytest.fixture
def request_body() -> InvoiceRequest:
    return InvoiceRequest(
        customer=Customer(name="Buyer Ltd", email="buyer@example.com"),
        items=[
            InvoiceLineItem(
                description="Diesel", quantity=Decimal("1000"), unit_price=Decimal("1.20")
            )
        ],
        meta=InvoiceMeta(invoice_number="INV-ord_1", order_id="ord_1"),
    )


class TestCreateInvoice:
    """Successful construction."""

    def test_renders_and_delivers(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        """Should return the document path, number, page count and total."""
        outcome = service.create_invoice(request_body, now=NOW)

        assert outcome.success is True
        assert outcome.invoice_number == "INV-ord_1"
        assert outcome.document_path == "buyer@example.com/2025/03/INV-ord_1.pdf"
        assert outcome.page_count == 1
        assert outcome.total == Decimal("1440.00")
        assert outcome.emailed is True
        assert outcome.error is None

        args, kwargs = dispatcher.deliver.call_args
        assert args[0].content.startswith(b"%PDF")
        assert args[1] == date(2025, 3, 14)
        assert args[2] == "buyer@example.com"
        assert kwargs["send_email"] is True
        assert kwargs["order_id"] == "ord_1"

    def test_fallback_invoice_number(
        self, service: InvoiceService, dispatcher: MagicMock
    ) -> None:
        """Should number the invoice INV-<unix seconds> when none is given."""
        request = InvoiceRequest(
            customer=Customer(),
            items=[InvoiceLineItem(total=Decimal("10"))],
        )

        outcome = service.create_invoice(request, now=NOW)

        assert outcome.invoice_number == f"INV-{int(NOW.timestamp())}"

    def test_routing_date_preferred_over_issue_date(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        request_body.meta.issue_date = date(2025, 3, 1)
        request_body.meta.routing_date = date(2025, 2, 27)

        service.create_invoice(request_body, now=NOW)

        assert dispatcher.deliver.call_args.args[1] == date(2025, 2, 27)

    def test_email_opt_out(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        request_body.email = False

        service.create_invoice(request_body, now=NOW)

        assert dispatcher.deliver.call_args.kwargs["send_email"] is False

    def test_delivery_errors_reported(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        """Should still succeed when a channel failed, listing the error."""
        dispatcher.deliver.return_value = DeliveryResult(
            stored=False,
            emailed=True,
            storage_path="buyer@example.com/2025/03/INV-ord_1.pdf",
            errors=["storage: S3 down"],
        )

        outcome = service.create_invoice(request_body, now=NOW)

        assert outcome.success is True
        assert outcome.stored is False
        assert outcome.document_path is None
        assert outcome.error == "storage: S3 down"


class TestCreateInvoiceFailures:
    """Construction errors."""

    def test_no_items(self, service: InvoiceService, dispatcher: MagicMock) -> None:
        """Should fail without delivering when there are no items."""
        outcome = service.create_invoice(InvoiceRequest(customer=Customer(), items=[]))

        assert outcome.success is False
        assert outcome.error == "No items in payload"
        dispatcher.deliver.assert_not_called()

    def test_render_failure_stores_nothing(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        """Should not deliver a partial document when rendering fails."""
        with patch.object(
            service.renderer, "render", side_effect=RenderFailure("layout overflow")
        ):
            outcome = service.create_invoice(request_body, now=NOW)

        assert outcome.success is False
        assert outcome.error == "layout overflow"
        dispatcher.deliver.assert_not_called()


class TestRenderOnly:
    """Preview rendering."""

    def test_render_does_not_deliver(
        self, service: InvoiceService, dispatcher: MagicMock, request_body: InvoiceRequest
    ) -> None:
        built = service.render(request_body, now=NOW)

        assert built.filename == "INV-ord_1.pdf"
        dispatcher.deliver.assert_not_called()

    def test_render_without_items_raises(self, service: InvoiceService) -> None:
        with pytest.raises(ValueError, match="No items"):
            service.render(InvoiceRequest(customer=Customer(), items=[]))


class TestRequestSchema:
    """Wire format of the construction boundary."""

    def test_camel_case_body(self) -> None:
        """Should accept camelCase keys including issueDateISO."""
        request = InvoiceRequest.model_validate(
            {
                "customer": {"name": "Ada", "addressLine1": "1 Road"},
                "items": [{"description": "Diesel", "quantity": 10, "unitPrice": "1.5"}],
                "currency": "EUR",
                "meta": {"invoiceNumber": "INV-9", "issueDateISO": "2025-03-14"},
            }
        )

        assert request.customer.address_line1 == "1 Road"
        assert request.items[0].unit_price == Decimal("1.5")
        assert request.meta.invoice_number == "INV-9"
        assert request.meta.issue_date == date(2025, 3, 14)

    @pytest.mark.parametrize(
        "value", ["2025-03-05T10:15:00.000Z", "2025-03-05T10:15:00+00:00", "2025-03-05"]
    )
    def test_issue_date_accepts_timestamps(self, value: str) -> None:
        """Should keep the date part of a full ISO timestamp."""
        meta = InvoiceMeta.model_validate({"issueDateISO": value, "routingDate": value})

        assert meta.issue_date == date(2025, 3, 5)
        assert meta.routing_date == date(2025, 3, 5)

    def test_issue_date_rejects_garbage(self) -> None:
        with pytest.raises(ValueError):
            InvoiceMeta.model_validate({"issueDateISO": "Tuesday"})

    def test_item_needs_exactly_one_price(self) -> None:
        with pytest.raises(ValueError):
            InvoiceLineItem(description="X", quantity=Decimal("1"))
        with pytest.raises(ValueError):
            InvoiceLineItem(
                description="X", quantity=Decimal("1"), total=Decimal("1"), unit_price=Decimal("1")
            )
