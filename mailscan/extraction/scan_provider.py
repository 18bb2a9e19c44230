"""Self-hosted OCR scan service provider.

Uploads the envelope image as multipart form data to a /scan endpoint and
receives already-structured JSON with the service's own field names. The
service is typically exposed through a dev tunnel; tunnel hosts that serve
an interstitial warning page get the configured bypass header.
"""

import json
import logging
from typing import Any
from urllib.parse import urlparse

import httpx

from mailscan.extraction.base import ProviderAdapter
from mailscan.extraction.errors import MissingCredentialError, NetworkError, ResponseParseError
from mailscan.extraction.events import EventSink
from mailscan.extraction.image import EnvelopeImage
from mailscan.extraction.schema import ProviderId
from mailscan.shared.config import Settings

logger = logging.getLogger(__name__)

# Scan service field -> common payload key
NATIVE_FIELDS = {
    "text": "address",
    "pin": "pin_code",
    "circle": "region",
    "region_name": "region",
}


class ScanServiceProvider(ProviderAdapter):
    """Multipart upload provider for the self-hosted OCR service."""

    def __init__(self, settings: Settings, event_sink: EventSink | None = None) -> None:
        super().__init__(settings, event_sink)
        self._client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)

    @property
    def provider_id(self) -> ProviderId:
        return ProviderId.SCAN

    def resolve_url(self, endpoint: str | None = None) -> str:
        """Get the scan URL, preferring the per-call override."""
        return endpoint or self.settings.scan_service_url

    def is_available(self, endpoint: str | None = None) -> bool:
        """Check if a scan service URL is configured or supplied for this call."""
        return bool(self.resolve_url(endpoint))

    def build_headers(self, url: str) -> dict[str, str]:
        """Get request headers for a scan URL.

        Args:
            url: Target scan URL

        Returns:
            Tunnel bypass header when the host matches settings.tunnel_hosts,
            otherwise no extra headers
        """
        host = (urlparse(url).hostname or "").lower()
        for suffix in self.settings.tunnel_hosts:
            suffix = suffix.lower().lstrip(".")
            if host == suffix or host.endswith("." + suffix):
                return dict(self.settings.tunnel_bypass_header)
        return {}

    async def _send(
        self,
        image: EnvelopeImage,
        model_hint: str | None,
        endpoint: str | None,
    ) -> tuple[int, str]:
        url = self.resolve_url(endpoint)
        if not url:
            raise MissingCredentialError("Scan service URL not configured (APP_SCAN_SERVICE_URL)")

        logger.info(f"Uploading envelope to scan service at {url}")
        try:
            response = await self._client.post(
                url,
                files={"file": (image.filename, image.data, image.mime_type)},
                headers=self.build_headers(url),
            )
        except httpx.TransportError as e:
            raise NetworkError(e) from e

        return response.status_code, response.text

    def parse_envelope(self, text: str) -> Any:
        """Parse the scan service JSON and remap its native field names.

        Args:
            text: Raw response body

        Returns:
            Payload using the common key vocabulary

        Raises:
            ResponseParseError: If the body is not valid JSON
        """
        try:
            body = json.loads(text or "{}")
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Scan service returned invalid JSON: {e}", text) from e

        if not isinstance(body, dict):
            return body

        payload = dict(body)
        for native, common in NATIVE_FIELDS.items():
            if native in payload and not payload.get(common):
                payload[common] = payload.pop(native)
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()
