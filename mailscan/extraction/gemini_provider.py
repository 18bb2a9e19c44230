"""Gemini-based extraction provider (direct multimodal model).

Sends the envelope image inline with the extraction instruction to the
Gemini generateContent REST endpoint and reads the JSON answer from the
first candidate. See: https://ai.google.dev/api/generate-content
"""

import json
import logging
from typing import Any

import httpx

from mailscan.extraction.base import EXTRACTION_PROMPT, ProviderAdapter
from mailscan.extraction.errors import MissingCredentialError, NetworkError, ResponseParseError
from mailscan.extraction.events import EventSink
from mailscan.extraction.image import EnvelopeImage
from mailscan.extraction.normalizer import parse_json_text
from mailscan.extraction.schema import ProviderId
from mailscan.shared.config import Settings

logger = logging.getLogger(__name__)


class GeminiProvider(ProviderAdapter):
    """Gemini generateContent provider.

    Requires APP_GEMINI_API_KEY. The model is settings.gemini_model unless
    the caller passes a model hint.
    """

    model_endpoint = True

    def __init__(self, settings: Settings, event_sink: EventSink | None = None) -> None:
        super().__init__(settings, event_sink)
        self._base_url = settings.gemini_base_url.rstrip("/")
        self._client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)

    @property
    def provider_id(self) -> ProviderId:
        return ProviderId.GEMINI

    def is_available(self, endpoint: str | None = None) -> bool:
        """Check if the Gemini API key is configured."""
        return bool(self.settings.gemini_api_key)

    def build_request(self, image: EnvelopeImage) -> dict[str, Any]:
        """Build the generateContent request body.

        Args:
            image: Envelope image

        Returns:
            JSON body with the inline image and the extraction instruction
        """
        return {
            "contents": [
                {
                    "parts": [
                        {"inline_data": {"mime_type": image.mime_type, "data": image.base64}},
                        {"text": EXTRACTION_PROMPT},
                    ]
                }
            ],
            "generationConfig": {
                "responseMimeType": "application/json",
                "temperature": 0.2,  # Low temperature for factual extraction
            },
        }

    async def _send(
        self,
        image: EnvelopeImage,
        model_hint: str | None,
        endpoint: str | None,
    ) -> tuple[int, str]:
        if not self.is_available():
            raise MissingCredentialError("Gemini API key not configured (APP_GEMINI_API_KEY)")

        model = model_hint or self.settings.gemini_model
        url = f"{self._base_url}/models/{model}:generateContent"
        logger.info(f"Sending envelope to Gemini model {model}")

        try:
            response = await self._client.post(
                url,
                json=self.build_request(image),
                headers={"x-goog-api-key": self.settings.gemini_api_key},
            )
        except httpx.TransportError as e:
            raise NetworkError(e) from e

        return response.status_code, response.text

    def parse_envelope(self, text: str) -> Any:
        """Extract the model's JSON answer from a generateContent response.

        Args:
            text: Raw response body

        Returns:
            Parsed JSON payload from the first candidate's text parts

        Raises:
            ResponseParseError: If the envelope or the embedded JSON is invalid
        """
        try:
            body = json.loads(text)
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Gemini returned a non-JSON body: {e}", text) from e

        candidates = body.get("candidates") if isinstance(body, dict) else None
        if not candidates:
            raise ResponseParseError("Gemini response contains no candidates", text)

        try:
            parts = candidates[0]["content"]["parts"]
            answer = "".join(part.get("text", "") for part in parts)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ResponseParseError(f"Gemini response has no text parts: {e!r}", text) from e
        return parse_json_text(answer)

    async def aclose(self) -> None:
        await self._client.aclose()
