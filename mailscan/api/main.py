"""FastAPI application for envelope scanning.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Envelope upload (multipart) and data URL scanning
- Provider fallback with user-facing error messages
- Raw provider response buffer for debugging panels
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, File, HTTPException, Query, Request, Response, UploadFile, status
from pydantic import BaseModel, Field

from mailscan.extraction.events import ExtractionEvent, QueueEventSink
from mailscan.extraction.factory import create_orchestrator
from mailscan.extraction.schema import (
    ErrorKind,
    ExtractionOptions,
    ExtractionOutcome,
    ExtractionRecord,
    ProviderId,
)
from mailscan.shared import metrics
from mailscan.shared.config import get_settings
from mailscan.shared.logging_config import configure_logging
from mailscan.storage.service import ScanStorageService, StoredScan

settings = get_settings()
event_sink = QueueEventSink(maxsize=settings.raw_event_buffer_size)
storage_service = ScanStorageService(settings)
orchestrator = create_orchestrator(
    settings,
    store=storage_service if storage_service.is_available() else None,
    event_sink=event_sink,
)


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    configure_logging(settings)
    yield
    await orchestrator.aclose()


app = FastAPI(
    title="Mail Scan Service",
    description="Envelope address extraction and sorting center recommendation",
    version=settings.service_version,
    lifespan=lifespan,
)


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


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    providers: list[ProviderId]
    storage: bool


class DataUrlScanRequest(BaseModel):
    """Scan request carrying the image as a data URL (canvas export)."""

    data_url: str
    preferred_provider: ProviderId | None = None
    model_hint: str | None = None
    override_endpoint: str | None = None
    timeout_seconds: float | None = Field(None, gt=0)


class ScanResponse(BaseModel):
    """Envelope scan response."""

    success: bool
    scan_id: str
    provider: ProviderId | None = None
    record: ExtractionRecord | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    providers_attempted: list[ProviderId]
    processing_time_ms: int


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Ready when at least one extraction provider is configured.

    Returns:
        Readiness status with configured providers
    """
    providers = orchestrator.configured_providers
    return ReadinessResponse(
        ready=bool(providers),
        providers=providers,
        storage=storage_service.is_available(),
    )


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


def _to_response(outcome: ExtractionOutcome, elapsed: float, response: Response) -> ScanResponse:
    if not outcome.success:
        response.status_code = status.HTTP_502_BAD_GATEWAY
    return ScanResponse(
        success=outcome.success,
        scan_id=outcome.row_id or str(uuid.uuid4()),
        provider=outcome.provider,
        record=outcome.record,
        error_kind=outcome.error_kind,
        error=outcome.error,
        providers_attempted=outcome.providers_attempted,
        processing_time_ms=int(elapsed * 1000),
    )


async def _run_scan(
    image: bytes | str, options: ExtractionOptions, response: Response
) -> ScanResponse:
    start = time.time()
    try:
        outcome = await orchestrator.extract(image, options)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    return _to_response(outcome, time.time() - start, response)


@app.post("/api/v1/scan", response_model=ScanResponse, tags=["Scan"])
async def scan_envelope(
    response: Response,
    file: UploadFile = File(..., description="Envelope image (PNG, JPEG, WebP)"),  # noqa: B008
    preferred_provider: ProviderId | None = Query(
        None, description="Provider to try first (scan, huggingface, gemini)"
    ),
    model_hint: str | None = Query(None, description="Model for the starting provider"),
    override_endpoint: str | None = Query(None, description="Scan service URL for this call"),
    timeout_seconds: float | None = Query(
        None, gt=0, description="Upper bound in seconds for each provider call"
    ),
) -> ScanResponse:
    """Scan an uploaded envelope image and recommend a sorting center.

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/scan?preferred_provider=gemini" \\
      -F "file=@envelope.png"
    ```

    ## Error Handling

    - Returns 400 if the file is missing, empty, or not an image
    - Returns 502 with a user-facing `error` once every configured provider failed
    - Returns 200 when extraction succeeded, even if persisting the scan failed

    Args:
        response: Outgoing response (status set to 502 when exhausted)
        file: Envelope image (required)
        preferred_provider: Starting provider (optional)
        model_hint: Model identifier for the starting provider (optional)
        override_endpoint: Scan service URL override (optional)
        timeout_seconds: Per-provider call timeout (optional)

    Returns:
        Scan response with the normalized address record or the failure message
    """
    if not file.content_type or not file.content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid file type: {file.content_type}. Only images are supported.",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file")

    options = ExtractionOptions(
        preferred_provider=preferred_provider,
        model_hint=model_hint,
        override_endpoint=override_endpoint,
        timeout_seconds=timeout_seconds,
    )
    return await _run_scan(content, options, response)


@app.post("/api/v1/scan/data-url", response_model=ScanResponse, tags=["Scan"])
async def scan_data_url(request: DataUrlScanRequest, response: Response) -> ScanResponse:
    """Scan an envelope image sent as a data URL.

    Args:
        request: Data URL and extraction options
        response: Outgoing response (status set to 502 when exhausted)

    Returns:
        Scan response with the normalized address record or the failure message
    """
    options = ExtractionOptions(
        preferred_provider=request.preferred_provider,
        model_hint=request.model_hint,
        override_endpoint=request.override_endpoint,
        timeout_seconds=request.timeout_seconds,
    )
    return await _run_scan(request.data_url, options, response)


@app.get("/api/v1/scans/{scan_id}", response_model=StoredScan, tags=["Scan"])
def get_scan(scan_id: str) -> StoredScan:
    """Load a persisted scan.

    Raises:
        HTTPException: 503 if storage is disabled, 404 if the scan is unknown
    """
    if not storage_service.is_available():
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Storage not enabled"
        )

    stored = storage_service.get(scan_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    return stored


@app.get("/api/v1/debug/events", response_model=list[ExtractionEvent], tags=["Monitoring"])
def drain_events() -> list[ExtractionEvent]:
    """Return and clear buffered raw-response and fallback events."""
    return event_sink.drain()
