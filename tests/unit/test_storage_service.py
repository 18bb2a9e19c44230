"""Unit tests for ScanStorageService (MinIO/S3-compatible scan store).

Tests storage operations with mocked MinIO client.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
from minio.error import S3Error

from mailscan.extraction.schema import ExtractionRecord
from mailscan.shared.config import Settings
from mailscan.storage.service import ScanStorageService


def s3_error(code: str, message: str) -> S3Error:
    """Build an S3Error the way MinIO raises it."""
    return S3Error(
        code=code,
        message=message,
        resource="/test-scans",
        request_id="12345",
        host_id="host",
        response=MagicMock(status=404, data=b""),
    )


@pytest.fixture
def storage_settings() -> Settings:
    """Create test settings with storage enabled."""
    return Settings(
        _env_file=None,
        storage_enabled=True,
        storage_endpoint="localhost:9000",
        storage_access_key="test-access-key",
        storage_secret_key="test-secret-key",
        storage_bucket="test-scans",
        storage_secure=False,
    )


@pytest.fixture
def mock_minio_client() -> MagicMock:
    """Create mock MinIO client."""
    mock = MagicMock()
    mock.bucket_exists.return_value = True
    return mock


@pytest.fixture
def record() -> ExtractionRecord:
    """Create a sample extraction record."""
    return ExtractionRecord(
        recipient="A. Sharma",
        address_line="14 Park Street",
        postal_code="700016",
        city="Kolkata",
        region="West Bengal",
        country="India",
        sorting_center_id="KOL-01",
        sorting_center_name="Kolkata GPO",
        confidence=88,
    )


class TestScanStorageAvailability:
    """Test storage service availability checks."""

    def test_is_available_when_enabled_and_configured(self, storage_settings: Settings) -> None:
        """Should return True when storage is enabled and credentials are set."""
        assert ScanStorageService(storage_settings).is_available() is True

    def test_is_not_available_when_disabled(self) -> None:
        """Should return False when storage is disabled."""
        service = ScanStorageService(Settings(_env_file=None, storage_enabled=False))
        assert service.is_available() is False

    def test_is_not_available_without_secret_key(self) -> None:
        """Should return False when secret key is missing."""
        settings = Settings(
            _env_file=None,
            storage_enabled=True,
            storage_access_key="access",
            storage_secret_key="",
        )
        assert ScanStorageService(settings).is_available() is False

    def test_get_client_requires_access_key(self) -> None:
        """Should raise ValueError when the client is built without keys."""
        service = ScanStorageService(Settings(_env_file=None, storage_access_key=""))
        with pytest.raises(ValueError, match="APP_STORAGE_ACCESS_KEY"):
            service._get_client()


class TestScanStorageHealthCheck:
    """Test storage service health checks."""

    def test_health_check_success(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should return True when MinIO is reachable."""
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            assert service.health_check() is True

        mock_minio_client.bucket_exists.assert_called_once_with("test-scans")

    def test_health_check_failure(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should return False when MinIO is not reachable."""
        mock_minio_client.bucket_exists.side_effect = Exception("Connection refused")
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            assert service.health_check() is False


class TestScanStorageInsert:
    """Test scan row inserts."""

    def test_insert_writes_json_row(
        self, storage_settings: Settings, mock_minio_client: MagicMock, record: ExtractionRecord
    ) -> None:
        """Should write the record as a JSON object keyed by row id."""
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            result = service.insert(record, "completed")

        assert result.success is True
        assert result.row_id is not None

        kwargs = mock_minio_client.put_object.call_args.kwargs
        assert kwargs["bucket_name"] == "test-scans"
        assert kwargs["object_name"] == f"scans/{result.row_id}.json"
        assert kwargs["content_type"] == "application/json"

        row = json.loads(kwargs["data"].getvalue())
        assert row["status"] == "completed"
        assert row["row_id"] == result.row_id
        assert row["record"]["postal_code"] == "700016"
        assert row["record"]["confidence"] == 88

    def test_insert_creates_missing_bucket_once(
        self, storage_settings: Settings, mock_minio_client: MagicMock, record: ExtractionRecord
    ) -> None:
        """Should create the bucket on first insert only."""
        mock_minio_client.bucket_exists.return_value = False
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            service.insert(record)
            service.insert(record)

        mock_minio_client.make_bucket.assert_called_once_with("test-scans")

    def test_insert_unique_row_ids(
        self, storage_settings: Settings, mock_minio_client: MagicMock, record: ExtractionRecord
    ) -> None:
        """Each insert gets a new row id."""
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            first = service.insert(record)
            second = service.insert(record)

        assert first.row_id != second.row_id

    def test_insert_when_disabled(self, record: ExtractionRecord) -> None:
        """Should fail without touching MinIO when storage is disabled."""
        service = ScanStorageService(Settings(_env_file=None, storage_enabled=False))

        result = service.insert(record)

        assert result.success is False
        assert "not enabled" in (result.error or "")

    def test_insert_s3_error(
        self, storage_settings: Settings, mock_minio_client: MagicMock, record: ExtractionRecord
    ) -> None:
        """Should report S3 errors instead of raising."""
        mock_minio_client.bucket_exists.side_effect = s3_error("AccessDenied", "Access denied")
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            result = service.insert(record)

        assert result.success is False
        assert result.error == "S3 error: AccessDenied - Access denied"


class TestScanStorageGet:
    """Test scan row lookups."""

    def test_get_returns_stored_scan(
        self, storage_settings: Settings, mock_minio_client: MagicMock, record: ExtractionRecord
    ) -> None:
        """Should parse the stored JSON row."""
        row = {
            "row_id": "row-1",
            "status": "completed",
            "created_at": "2026-01-05T10:00:00+00:00",
            "record": record.model_dump(),
        }
        response = MagicMock()
        response.read.return_value = json.dumps(row).encode()
        mock_minio_client.get_object.return_value = response
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            stored = service.get("row-1")

        assert stored is not None
        assert stored.row_id == "row-1"
        assert stored.record == record
        mock_minio_client.get_object.assert_called_once_with(
            bucket_name="test-scans", object_name="scans/row-1.json"
        )
        response.close.assert_called_once()
        response.release_conn.assert_called_once()

    def test_get_missing_row(
        self, storage_settings: Settings, mock_minio_client: MagicMock
    ) -> None:
        """Should return None for an unknown row id."""
        mock_minio_client.get_object.side_effect = s3_error("NoSuchKey", "Object not found")
        service = ScanStorageService(storage_settings)

        with patch.object(service, "_get_client", return_value=mock_minio_client):
            assert service.get("missing") is None
