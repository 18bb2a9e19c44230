"""Abstract base class for extraction provider adapters.

Enables switching between vision backends (direct multimodal model, hosted
inference router, self-hosted OCR service) behind one interface.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python

Each adapter knows two things: how to send an envelope image to its backend
and how to pull a JSON payload out of that backend's response envelope.
Status checking, transient retries and raw-response events are shared here,
so the orchestrator and normalizer never see provider-specific shapes.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from mailscan.extraction.classifier import classify
from mailscan.extraction.errors import TransportError
from mailscan.extraction.events import EventSink, RawResponseEvent, safe_emit
from mailscan.extraction.image import EnvelopeImage
from mailscan.extraction.schema import ErrorKind, ProviderId, RawProviderResponse
from mailscan.shared.config import Settings

logger = logging.getLogger(__name__)

TRANSIENT_KINDS = frozenset(
    {ErrorKind.NETWORK, ErrorKind.RATE_LIMITED, ErrorKind.SERVICE_UNAVAILABLE}
)

EXTRACTION_PROMPT = (
    "Analyze this image of a mail envelope. Perform Optical Character Recognition (OCR) "
    "to extract the recipient and address details. Based on the extracted PIN/ZIP code "
    "and city, classify this mail item into a logical sorting center. "
    "Return the result purely as a valid JSON object with exactly the following keys: "
    "recipient, address, pin_code, city, state, country, sorting_center_id, "
    "sorting_center_name, confidence. Use an empty string for any value you cannot read. "
    "Confidence must be an integer from 0 to 100."
)


def _is_transient(error: BaseException) -> bool:
    return classify(error) in TRANSIENT_KINDS


class ProviderAdapter(ABC):
    """Abstract base class for envelope extraction providers.

    All providers must implement this interface to ensure consistent
    behavior and type safety.

    Example implementations:
    - ScanServiceProvider: self-hosted OCR service (multipart upload)
    - HuggingFaceProvider: hosted inference router (chat completions)
    - GeminiProvider: direct multimodal model (generateContent)
    """

    # True when the backend URL names a model, so HTTP 404 means "model unavailable"
    model_endpoint: bool = False

    # Backoff between same-provider attempts
    retry_wait: Any = wait_exponential_jitter(initial=1, max=10)

    def __init__(self, settings: Settings, event_sink: EventSink | None = None) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
            event_sink: Receiver of raw-response events (optional)
        """
        self.settings = settings
        self.event_sink = event_sink

    @property
    @abstractmethod
    def provider_id(self) -> ProviderId:
        """Get provider identifier used by configuration and the fallback policy."""

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'scan', 'gemini')
        """
        return self.provider_id.value

    @abstractmethod
    def is_available(self, endpoint: str | None = None) -> bool:
        """Check if this provider has its credential or endpoint configured.

        Must not perform I/O: the fallback policy treats it as a pure predicate.

        Args:
            endpoint: Per-call endpoint override, if any

        Returns:
            True if provider can be used, False otherwise
        """

    @abstractmethod
    async def _send(
        self,
        image: EnvelopeImage,
        model_hint: str | None,
        endpoint: str | None,
    ) -> tuple[int, str]:
        """Send the provider request.

        Returns:
            Tuple of (HTTP status, raw response body)

        Raises:
            NetworkError: If the backend could not be reached
            MissingCredentialError: If called without a credential
        """

    @abstractmethod
    def parse_envelope(self, text: str) -> Any:
        """Pull the pre-shaped payload out of a 2xx response body.

        Args:
            text: Raw response body

        Returns:
            Parsed payload ready for the normalizer

        Raises:
            ResponseParseError: If the body or its embedded JSON is invalid
        """

    async def invoke(
        self,
        image: EnvelopeImage,
        *,
        model_hint: str | None = None,
        endpoint: str | None = None,
    ) -> RawProviderResponse:
        """Call the provider and return its parsed response.

        Transient failures are retried up to settings.provider_retry_attempts
        times with exponential backoff and jitter.

        Args:
            image: Envelope image
            model_hint: Model override for model-backed providers
            endpoint: Endpoint override for URL-configured providers

        Returns:
            RawProviderResponse with the pre-shaped payload

        Raises:
            TransportError: On non-2xx status after retries
            NetworkError: On connection failure after retries
            ResponseParseError: If the response envelope cannot be parsed
        """
        status, text = 0, ""
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(_is_transient),
            wait=self.retry_wait,
            stop=stop_after_attempt(self.settings.provider_retry_attempts),
            reraise=True,
        ):
            with attempt:
                status, text = await self._send(image, model_hint, endpoint)
                safe_emit(
                    self.event_sink,
                    RawResponseEvent(
                        provider=self.provider_id, http_status=status, raw_response_text=text
                    ),
                )
                if not 200 <= status < 300:
                    logger.warning(f"{self.provider_name} returned HTTP {status}")
                    raise TransportError(status, text, model_endpoint=self.model_endpoint)

        return RawProviderResponse(
            provider=self.provider_id,
            http_status=status,
            text=text,
            payload=self.parse_envelope(text),
        )

    async def aclose(self) -> None:
        """Release network resources held by the provider."""
