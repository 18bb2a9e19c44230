"""Unit tests for the envelope scan API.

Tests cover:
- Health and readiness endpoints
- Multipart and data URL scanning
- Exhausted fallback chain responses
- Stored scan lookup and the debug event buffer
- Prometheus metrics endpoint
"""

import base64
import io
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient
from PIL import Image

from mailscan.api import main
from mailscan.api.main import app
from mailscan.extraction.events import FallbackEvent
from mailscan.extraction.schema import (
    AttemptRecord,
    ErrorKind,
    ExtractionOutcome,
    ExtractionRecord,
    ProviderId,
)
from mailscan.storage.service import StoredScan


@pytest.fixture
def client() -> TestClient:
    """Create test client."""
    return TestClient(app)


@pytest.fixture
def sample_image_bytes() -> bytes:
    """Create a simple test image as bytes."""
    img = Image.new("RGB", (200, 100), color="white")
    img_bytes = io.BytesIO()
    img.save(img_bytes, format="PNG")
    return img_bytes.getvalue()


def attempt(provider: ProviderId, kind: ErrorKind | None = None) -> AttemptRecord:
    return AttemptRecord(
        provider=provider,
        started_at=datetime.now(timezone.utc),
        outcome="failure" if kind else "success",
        error_kind=kind,
    )


SUCCESS = ExtractionOutcome(
    success=True,
    record=ExtractionRecord(city="Mumbai", postal_code="400001", confidence=92),
    provider=ProviderId.GEMINI,
    attempts=[attempt(ProviderId.SCAN, ErrorKind.NETWORK), attempt(ProviderId.GEMINI)],
    row_id="row-42",
)

EXHAUSTED = ExtractionOutcome(
    success=False,
    provider=ProviderId.SCAN,
    error_kind=ErrorKind.SERVICE_UNAVAILABLE,
    error="The address extraction service is temporarily unavailable. Try again shortly.",
    attempts=[attempt(ProviderId.SCAN, ErrorKind.SERVICE_UNAVAILABLE)],
)


def test_health_check(client: TestClient) -> None:
    """Test health check endpoint."""
    response = client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["status"] == "healthy"
    assert data["service"] == "mailscan"


def test_readiness_lists_configured_providers(client: TestClient) -> None:
    """Test readiness reports configured providers."""
    with patch.object(main.orchestrator, "_configured", frozenset({ProviderId.GEMINI})):
        response = client.get("/ready")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["ready"] is True
    assert data["providers"] == ["gemini"]


def test_readiness_without_providers(client: TestClient) -> None:
    """Test service is not ready when no provider is configured."""
    with patch.object(main.orchestrator, "_configured", frozenset()):
        response = client.get("/ready")

    assert response.json()["ready"] is False


def test_scan_upload_success(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test scanning an uploaded envelope."""
    files = {"file": ("envelope.png", sample_image_bytes, "image/png")}

    with patch.object(main.orchestrator, "extract", AsyncMock(return_value=SUCCESS)) as mock_extract:
        response = client.post(
            "/api/v1/scan",
            files=files,
            params={"preferred_provider": "gemini", "model_hint": "gemini-2.5-pro"},
        )

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    assert data["scan_id"] == "row-42"
    assert data["provider"] == "gemini"
    assert data["record"]["postal_code"] == "400001"
    assert data["providers_attempted"] == ["scan", "gemini"]

    image, options = mock_extract.call_args.args
    assert image == sample_image_bytes
    assert options.preferred_provider == ProviderId.GEMINI
    assert options.model_hint == "gemini-2.5-pro"


def test_scan_exhausted_returns_502(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test an exhausted chain returns the user-facing message with 502."""
    files = {"file": ("envelope.png", sample_image_bytes, "image/png")}

    with patch.object(main.orchestrator, "extract", AsyncMock(return_value=EXHAUSTED)):
        response = client.post("/api/v1/scan", files=files)

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    data = response.json()
    assert data["success"] is False
    assert data["error_kind"] == "service_unavailable"
    assert data["error"].startswith("The address extraction service")
    assert data["record"] is None


def test_scan_rejects_non_image(client: TestClient) -> None:
    """Test that non-image uploads are rejected."""
    files = {"file": ("notes.txt", b"hello", "text/plain")}

    response = client.post("/api/v1/scan", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "Invalid file type" in response.json()["detail"]


def test_scan_rejects_empty_file(client: TestClient) -> None:
    """Test that empty uploads are rejected."""
    files = {"file": ("envelope.png", b"", "image/png")}

    response = client.post("/api/v1/scan", files=files)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


def test_scan_without_file(client: TestClient) -> None:
    """Test that the file field is required."""
    response = client.post("/api/v1/scan")

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_scan_data_url(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test scanning an image sent as a data URL."""
    data_url = "data:image/png;base64," + base64.b64encode(sample_image_bytes).decode()

    with patch.object(main.orchestrator, "extract", AsyncMock(return_value=SUCCESS)) as mock_extract:
        response = client.post(
            "/api/v1/scan/data-url",
            json={"data_url": data_url, "override_endpoint": "https://x.ngrok-free.app/scan"},
        )

    assert response.status_code == status.HTTP_200_OK
    image, options = mock_extract.call_args.args
    assert image == data_url
    assert options.override_endpoint == "https://x.ngrok-free.app/scan"


def test_scan_data_url_invalid_image(client: TestClient) -> None:
    """Test that an undecodable image is a client error."""
    with patch.object(
        main.orchestrator, "extract", AsyncMock(side_effect=ValueError("Empty image provided"))
    ):
        response = client.post("/api/v1/scan/data-url", json={"data_url": ""})

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["detail"] == "Empty image provided"


def test_get_scan_storage_disabled(client: TestClient) -> None:
    """Test stored scan lookup without storage."""
    with patch.object(main.storage_service, "is_available", return_value=False):
        response = client.get("/api/v1/scans/row-42")

    assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE


def test_get_scan_not_found(client: TestClient) -> None:
    """Test lookup of an unknown scan."""
    with (
        patch.object(main.storage_service, "is_available", return_value=True),
        patch.object(main.storage_service, "get", return_value=None),
    ):
        response = client.get("/api/v1/scans/missing")

    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_get_scan(client: TestClient) -> None:
    """Test lookup of a stored scan."""
    stored = StoredScan(
        row_id="row-42",
        status="completed",
        created_at=datetime.now(timezone.utc),
        record=ExtractionRecord(city="Mumbai"),
    )
    with (
        patch.object(main.storage_service, "is_available", return_value=True),
        patch.object(main.storage_service, "get", return_value=stored),
    ):
        response = client.get("/api/v1/scans/row-42")

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["record"]["city"] == "Mumbai"


def test_debug_events_drained(client: TestClient) -> None:
    """Test buffered events are returned once."""
    main.event_sink.drain()
    main.event_sink.emit(
        FallbackEvent(
            from_provider=ProviderId.SCAN,
            to_provider=ProviderId.HUGGINGFACE,
            error_kind=ErrorKind.NETWORK,
        )
    )

    first = client.get("/api/v1/debug/events").json()
    second = client.get("/api/v1/debug/events").json()

    assert len(first) == 1
    assert first[0]["from_provider"] == "scan"
    assert second == []


def test_metrics_endpoint(client: TestClient) -> None:
    """Test Prometheus metrics endpoint."""
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == status.HTTP_200_OK
    assert "http_requests_total" in response.text


def test_scan_forwards_timeout(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test the per-call provider timeout is passed to the orchestrator."""
    files = {"file": ("envelope.png", sample_image_bytes, "image/png")}

    with patch.object(main.orchestrator, "extract", AsyncMock(return_value=SUCCESS)) as mock_extract:
        response = client.post("/api/v1/scan", files=files, params={"timeout_seconds": 7.5})

    assert response.status_code == status.HTTP_200_OK
    _, options = mock_extract.call_args.args
    assert options.timeout_seconds == 7.5


def test_scan_data_url_forwards_timeout(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test the data URL endpoint accepts a per-call timeout."""
    data_url = "data:image/png;base64," + base64.b64encode(sample_image_bytes).decode()

    with patch.object(main.orchestrator, "extract", AsyncMock(return_value=SUCCESS)) as mock_extract:
        client.post("/api/v1/scan/data-url", json={"data_url": data_url, "timeout_seconds": 3})

    _, options = mock_extract.call_args.args
    assert options.timeout_seconds == 3


def test_scan_rejects_non_positive_timeout(client: TestClient, sample_image_bytes: bytes) -> None:
    """Test a zero timeout is a validation error."""
    files = {"file": ("envelope.png", sample_image_bytes, "image/png")}

    response = client.post("/api/v1/scan", files=files, params={"timeout_seconds": 0})

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
