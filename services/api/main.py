"""FastAPI application for payment events and invoices.

Production-ready API with:
- Signed payment event webhook feeding the invoicing pipeline
- Invoice construction endpoint protected by a shared secret
- Health and readiness checks for Kubernetes
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import hmac
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from decimal import Decimal
from typing import Literal

from fastapi import FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from services.api import metrics
from services.delivery.dispatcher import DeliveryDispatcher
from services.delivery.email import EmailService
from services.invoicing.schema import InvoiceRequest
from services.invoicing.service import InvoiceService
from services.ledger.database import Database
from services.ledger.event_ledger import EventLedger
from services.ledger.orders import OrderLedger
from services.processor.client import ProcessorClient
from services.reconciliation.reconciler import OrderReconciler
from services.rendering.pdf import InvoiceRenderer
from services.shared.config import Settings, get_settings
from services.shared.errors import InvalidSignature, RenderFailure
from services.shared.logging import configure_logging
from services.storage.service import StorageService
from services.webhooks.events import InvalidPayload, PaymentEvent
from services.webhooks.pipeline import PaymentEventPipeline
from services.webhooks.signature import SIGNATURE_HEADER, SignatureVerifier

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Explicitly constructed collaborators shared by the routes."""

    settings: Settings
    database: Database
    storage: StorageService
    verifier: SignatureVerifier
    invoices: InvoiceService
    pipeline: PaymentEventPipeline


def build_container(settings: Settings) -> ServiceContainer:
    """Wire every component from settings."""
    database = Database.from_settings(settings)
    storage = StorageService(settings)
    processor = ProcessorClient(settings)
    invoices = InvoiceService(
        settings,
        InvoiceRenderer(settings),
        DeliveryDispatcher(settings, storage, EmailService(settings)),
    )
    pipeline = PaymentEventPipeline(
        settings,
        EventLedger(database),
        OrderReconciler(OrderLedger(database), database, processor),
        processor,
        invoices,
    )
    return ServiceContainer(
        settings=settings,
        database=database,
        storage=storage,
        verifier=SignatureVerifier.from_settings(settings),
        invoices=invoices,
        pipeline=pipeline,
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    database: bool
    storage: bool | None = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment processor."""

    received: bool = True
    error: str | None = None


class InvoiceResponse(BaseModel):
    """Invoice construction response."""

    success: bool
    invoice_number: str | None = None
    document_path: str | None = None
    page_count: int | None = None
    total: Decimal | None = None
    emailed: bool = False
    email_id: str | None = None
    error: str | None = None


def create_app(container: ServiceContainer | None = None) -> FastAPI:
    """Create the application.

    Args:
        container: Pre-built collaborators (tests); built from settings if omitted
    """
    services = container or build_container(get_settings())
    settings = services.settings

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings)
        if settings.database_auto_create:
            services.database.create_tables()
        logger.info(f"{settings.service_name} {settings.service_version} started")
        yield

    app = FastAPI(
        title="Payment Invoice Pipeline",
        description="Turns verified payment events into delivered PDF invoices",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.state.services = services

    @app.middleware("http")
    async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Middleware to collect request metrics.

        Tracks:
        - Request count by method, endpoint, and status
        - Request duration by method and endpoint
        """
        # Skip metrics for /metrics endpoint itself
        if request.url.path == "/metrics":
            return await call_next(request)

        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        metrics.http_requests_total.labels(
            method=request.method,
            endpoint=request.url.path,
            status=response.status_code,
        ).inc()

        metrics.http_request_duration_seconds.labels(
            method=request.method,
            endpoint=request.url.path,
        ).observe(duration)

        return response

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    def health_check() -> HealthResponse:
        """Health check endpoint for liveness checks."""
        return HealthResponse(
            status="healthy", version=settings.service_version, service=settings.service_name
        )

    @app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
    def readiness_check(response: Response) -> ReadinessResponse:
        """Readiness check endpoint for Kubernetes readiness checks.

        Ready when the database answers and, if storage is enabled, the
        object store answers too. Returns 503 otherwise.
        """
        database_ok = services.database.health_check()
        storage_ok = services.storage.health_check() if settings.storage_enabled else None
        ready = database_ok and storage_ok is not False
        if not ready:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return ReadinessResponse(ready=ready, database=database_ok, storage=storage_ok)

    @app.get("/metrics", tags=["Monitoring"])
    def get_metrics() -> Response:
        """Prometheus metrics endpoint."""
        metrics_data, content_type = metrics.get_metrics()
        return Response(content=metrics_data, media_type=content_type)

    @app.post("/api/v1/webhooks/payments", response_model=WebhookAck, tags=["Webhooks"])
    async def receive_payment_event(
        request: Request,
        signature: str | None = Header(None, alias=SIGNATURE_HEADER),
    ) -> WebhookAck:
        """Receive a payment processor event.

        The signature is checked over the raw body before anything is parsed
        or written.

        ## Error Handling

        - Returns 400 if the signature is missing, stale or does not match
        - Returns 400 if a correctly signed body is not an event object
        - Returns 200 for everything else, with `error` set when a downstream
          stage failed, so the processor does not keep redelivering

        Raises:
            HTTPException: On signature or payload rejection
        """
        raw_body = await request.body()

        try:
            services.verifier.verify(raw_body, signature)
            event = PaymentEvent.parse(raw_body)
        except InvalidSignature as e:
            logger.warning(f"Rejected payment event: {e}")
            metrics.payment_events_total.labels(event_type="unknown", outcome="rejected").inc()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
        except InvalidPayload as e:
            logger.warning(f"Rejected signed but malformed payment event: {e}")
            metrics.payment_events_total.labels(event_type="unknown", outcome="rejected").inc()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

        try:
            outcome = await run_in_threadpool(services.pipeline.process, event)
        except Exception as e:
            logger.exception(f"Unhandled error processing event {event.id}: {e}")
            metrics.payment_events_total.labels(event_type=event.type, outcome="failed").inc()
            return WebhookAck(error="processing_failed")

        return WebhookAck(error=outcome.error)

    @app.post("/api/v1/invoices", response_model=InvoiceResponse, tags=["Invoices"])
    async def create_invoice(
        body: InvoiceRequest,
        format: Literal["json", "pdf"] = Query(  # noqa: A002
            "json", description="`pdf` returns the document inline without storing or emailing"
        ),
        invoice_secret: str | None = Header(None, alias="x-invoice-secret"),
    ) -> InvoiceResponse | Response:
        """Build an invoice from explicit customer and line item data.

        ## Usage Examples

        ```bash
        curl -X POST "http://localhost:8000/api/v1/invoices" \\
          -H "x-invoice-secret: $SECRET" -H "Content-Type: application/json" \\
          -d '{"customer": {"name": "Ada", "email": "ada@example.com"},
               "items": [{"description": "Diesel", "quantity": 1000, "unitPrice": 1.2}]}'
        ```

        ## Error Handling

        - Returns 401 if the shared secret is configured and missing or wrong
        - Returns 400 if there are no items or rendering fails
        - Returns 200 with `emailed: false` if only delivery failed

        Raises:
            HTTPException: On authentication or construction failure
        """
        expected = settings.invoice_secret
        if expected and not hmac.compare_digest(invoice_secret or "", expected):
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

        if format == "pdf":
            try:
                built = await run_in_threadpool(services.invoices.render, body)
            except (ValueError, RenderFailure) as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
            return Response(
                content=built.content,
                media_type="application/pdf",
                headers={"Content-Disposition": f'inline; filename="{built.filename}"'},
            )

        outcome = await run_in_threadpool(services.invoices.create_invoice, body)
        if not outcome.success:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=outcome.error)

        return InvoiceResponse(
            success=True,
            invoice_number=outcome.invoice_number,
            document_path=outcome.document_path,
            page_count=outcome.page_count,
            total=outcome.total,
            emailed=outcome.emailed,
            email_id=outcome.email_id,
            error=outcome.error,
        )

    return app


app = create_app()
