"""Mail scan data models for structured address extraction.

ExtractionRecord is the canonical output every provider response is
normalized into. The remaining models describe one extraction call.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ProviderId(str, Enum):
    """Extraction backends, named as they appear in configuration."""

    SCAN = "scan"
    HUGGINGFACE = "huggingface"
    GEMINI = "gemini"


class ErrorKind(str, Enum):
    """Classified failure of a provider call."""

    NETWORK = "network"
    RATE_LIMITED = "rate_limited"
    SERVICE_UNAVAILABLE = "service_unavailable"
    AUTH_FAILURE = "auth_failure"
    MALFORMED_RESPONSE = "malformed_response"
    MODEL_NOT_FOUND = "model_not_found"
    UNKNOWN = "unknown"


class ExtractionRecord(BaseModel):
    """Structured address data extracted from an envelope image.

    All text fields default to empty strings so that a parseable but sparse
    model answer still produces a record the operator can correct.
    """

    recipient: str = Field("", description="Name of the recipient on the envelope")
    address_line: str = Field("", description="Full address lines as read")
    postal_code: str = Field("", description="PIN / ZIP / postal code")
    city: str = Field("", description="City read or inferred from the postal code")
    region: str = Field("", description="State, postal circle or region")
    country: str = Field("", description="Country read or inferred from the postal code")
    sorting_center_id: str = Field("", description="Recommended sorting center identifier")
    sorting_center_name: str = Field("", description="Recommended sorting center name")
    confidence: int = Field(0, description="Extraction confidence (0-100, 0 = unknown)")

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: int) -> int:
        return max(0, min(100, value))


class ExtractionOptions(BaseModel):
    """Per-call options for one extraction.

    Attributes:
        preferred_provider: Provider to try first (None = first of the configured order)
        model_hint: Model identifier passed to model-backed providers
        override_endpoint: Scan service URL used instead of the configured one
        timeout_seconds: Upper bound for each individual provider call
    """

    preferred_provider: ProviderId | None = None
    model_hint: str | None = None
    override_endpoint: str | None = None
    timeout_seconds: float | None = Field(None, gt=0)


class RawProviderResponse(BaseModel):
    """A provider's answer after envelope parsing.

    Attributes:
        provider: Provider that produced the response
        http_status: HTTP status of the provider call
        text: Raw response body as received
        payload: Pre-shaped payload (fences stripped, JSON parsed, native keys remapped)
    """

    provider: ProviderId
    http_status: int
    text: str
    payload: Any


class AttemptRecord(BaseModel):
    """One provider attempt inside a single extract() call."""

    provider: ProviderId
    started_at: datetime
    outcome: str  # success, failure
    error_kind: ErrorKind | None = None
    duration_ms: int = 0


class ExtractionOutcome(BaseModel):
    """Result of an extraction request.

    Attributes:
        success: Whether any provider produced a record
        record: Normalized record, None on failure
        provider: Provider that produced the record (or failed last)
        error_kind: Classification of the last failure when exhausted
        error: User-facing failure message (never a raw provider payload)
        attempts: Provider attempts in the order they were made
        row_id: Identifier returned by the scan store, if the record was persisted
    """

    success: bool
    record: ExtractionRecord | None = None
    provider: ProviderId | None = None
    error_kind: ErrorKind | None = None
    error: str | None = None
    attempts: list[AttemptRecord] = Field(default_factory=list)
    row_id: str | None = None

    @property
    def providers_attempted(self) -> list[ProviderId]:
        """Providers in the order they were attempted."""
        return [attempt.provider for attempt in self.attempts]
