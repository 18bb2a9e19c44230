"""Scan persistence on S3-compatible object storage using MinIO.

Implements the row-store contract the orchestrator relies on: insert one
completed scan, select it back by row id. Each row is a JSON object
`scans/<row_id>.json` in the configured bucket.

Based on MinIO Python SDK:
https://min.io/docs/minio/linux/developers/python/API.html
"""

import io
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

from minio import Minio
from minio.error import S3Error
from pydantic import BaseModel
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from mailscan.extraction.schema import ExtractionRecord
from mailscan.shared.config import Settings

logger = logging.getLogger(__name__)

OBJECT_PREFIX = "scans/"


class StoreResult(BaseModel):
    """Result of a store operation.

    Attributes:
        success: Whether operation succeeded
        row_id: Identifier of the stored scan
        error: Error message if operation failed
    """

    success: bool
    row_id: str | None = None
    error: str | None = None


class StoredScan(BaseModel):
    """A persisted scan row."""

    row_id: str
    status: str
    created_at: datetime
    record: ExtractionRecord


class ScanStore(Protocol):
    """Row-store collaborator used by the orchestrator."""

    def insert(self, record: ExtractionRecord, status: str) -> StoreResult: ...


class ScanStorageService:
    """MinIO-backed scan store.

    Provides scan persistence with data sovereignty support
    through on-premises MinIO deployment.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize storage service.

        Args:
            settings: Application settings with storage configuration
        """
        self.settings = settings
        self._client: Minio | None = None
        self._bucket_ready = False

    def _get_client(self) -> Minio:
        """Get or create MinIO client (lazy initialization).

        Returns:
            Configured Minio client instance

        Raises:
            ValueError: If storage credentials are not configured
        """
        if self._client is None:
            if not self.settings.storage_access_key:
                raise ValueError(
                    "Storage access key not configured. "
                    "Set APP_STORAGE_ACCESS_KEY environment variable."
                )
            if not self.settings.storage_secret_key:
                raise ValueError(
                    "Storage secret key not configured. "
                    "Set APP_STORAGE_SECRET_KEY environment variable."
                )

            self._client = Minio(
                endpoint=self.settings.storage_endpoint,
                access_key=self.settings.storage_access_key,
                secret_key=self.settings.storage_secret_key,
                secure=self.settings.storage_secure,
            )
            logger.info(f"MinIO client initialized for endpoint: {self.settings.storage_endpoint}")

        return self._client

    def is_available(self) -> bool:
        """Check if storage is enabled and credentials are set."""
        if not self.settings.storage_enabled:
            return False

        return bool(self.settings.storage_access_key and self.settings.storage_secret_key)

    def health_check(self) -> bool:
        """Check if storage backend is reachable.

        Returns:
            True if MinIO server responds to bucket_exists
        """
        if not self.is_available():
            return False

        try:
            self._get_client().bucket_exists(self.settings.storage_bucket)
            return True
        except Exception as e:
            logger.warning(f"Storage health check failed: {e}")
            return False

    def _ensure_bucket(self) -> None:
        if self._bucket_ready:
            return

        client = self._get_client()
        bucket = self.settings.storage_bucket
        if not client.bucket_exists(bucket):
            client.make_bucket(bucket)
            logger.info(f"Created bucket: {bucket}")

        self._bucket_ready = True

    @staticmethod
    def _object_name(row_id: str) -> str:
        return f"{OBJECT_PREFIX}{row_id}.json"

    @retry(
        retry=retry_if_exception_type(S3Error),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(initial=1, max=10),
        reraise=True,
    )
    def _put_row(self, row_id: str, row: dict[str, Any]) -> None:
        data = json.dumps(row).encode("utf-8")
        self._get_client().put_object(
            bucket_name=self.settings.storage_bucket,
            object_name=self._object_name(row_id),
            data=io.BytesIO(data),
            length=len(data),
            content_type="application/json",
        )

    def insert(self, record: ExtractionRecord, status: str = "completed") -> StoreResult:
        """Persist one scan.

        Args:
            record: Normalized extraction record
            status: Scan status (completed, failed)

        Returns:
            StoreResult with the new row id, or the error
        """
        if not self.is_available():
            return StoreResult(success=False, error="Storage not enabled or not configured")

        row_id = str(uuid.uuid4())
        row = {
            "row_id": row_id,
            "status": status,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "record": record.model_dump(),
        }

        try:
            self._ensure_bucket()
            self._put_row(row_id, row)
        except S3Error as e:
            logger.error(f"S3 error storing scan {row_id}: {e}")
            return StoreResult(success=False, error=f"S3 error: {e.code} - {e.message}")
        except Exception as e:
            logger.error(f"Error storing scan {row_id}: {e}")
            return StoreResult(success=False, error=str(e))

        logger.info(f"Stored scan {row_id} in {self.settings.storage_bucket}")
        return StoreResult(success=True, row_id=row_id)

    def get(self, row_id: str) -> StoredScan | None:
        """Load a stored scan by row id.

        Args:
            row_id: Identifier returned by insert()

        Returns:
            StoredScan, or None if the row does not exist
        """
        client = self._get_client()
        try:
            response = client.get_object(
                bucket_name=self.settings.storage_bucket,
                object_name=self._object_name(row_id),
            )
        except S3Error as e:
            if e.code == "NoSuchKey":
                return None
            raise

        try:
            return StoredScan.model_validate_json(response.read())
        finally:
            response.close()
            response.release_conn()
