"""Hugging Face inference router extraction provider.

The router exposes an OpenAI-compatible chat completions API, so requests go
through the OpenAI SDK pointed at settings.hf_base_url. The envelope image is
embedded in the user message as a data URI next to the extraction instruction.

Requires APP_HF_API_KEY and a vision-capable model the token has access to
(gated models need their license accepted on huggingface.co first).
"""

import json
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from mailscan.extraction.base import EXTRACTION_PROMPT, ProviderAdapter
from mailscan.extraction.errors import MissingCredentialError, NetworkError, ResponseParseError
from mailscan.extraction.events import EventSink
from mailscan.extraction.image import EnvelopeImage
from mailscan.extraction.normalizer import parse_json_text
from mailscan.extraction.schema import ProviderId
from mailscan.shared.config import Settings

logger = logging.getLogger(__name__)


class HuggingFaceProvider(ProviderAdapter):
    """Chat-completions provider on the Hugging Face inference router."""

    # The router returns 404 when the requested model is unknown or gated
    model_endpoint = True

    def __init__(self, settings: Settings, event_sink: EventSink | None = None) -> None:
        super().__init__(settings, event_sink)
        self._client: AsyncOpenAI | None = None

    @property
    def provider_id(self) -> ProviderId:
        return ProviderId.HUGGINGFACE

    def is_available(self, endpoint: str | None = None) -> bool:
        """Check if the Hugging Face token is configured."""
        return bool(self.settings.hf_api_key)

    def _get_client(self) -> AsyncOpenAI:
        """Get or create the router client (lazy initialization).

        SDK retries are disabled: transient retries are governed by
        settings.provider_retry_attempts in ProviderAdapter.invoke().
        """
        if self._client is None:
            self._client = AsyncOpenAI(
                api_key=self.settings.hf_api_key,
                base_url=self.settings.hf_base_url,
                timeout=self.settings.request_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def build_messages(self, image: EnvelopeImage) -> list[dict[str, Any]]:
        """Build the chat message carrying the image and instruction.

        Args:
            image: Envelope image

        Returns:
            Messages list for chat.completions.create
        """
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": EXTRACTION_PROMPT},
                    {"type": "image_url", "image_url": {"url": image.data_url}},
                ],
            }
        ]

    async def _send(
        self,
        image: EnvelopeImage,
        model_hint: str | None,
        endpoint: str | None,
    ) -> tuple[int, str]:
        if not self.is_available():
            raise MissingCredentialError("Hugging Face token not configured (APP_HF_API_KEY)")

        model = model_hint or self.settings.hf_model
        logger.info(f"Sending envelope to Hugging Face router model {model}")

        try:
            raw = await self._get_client().chat.completions.with_raw_response.create(
                model=model,
                messages=self.build_messages(image),  # type: ignore[arg-type]
                temperature=0,  # Deterministic output
            )
        except APIStatusError as e:
            return e.status_code, e.response.text
        except APIConnectionError as e:
            raise NetworkError(e) from e

        return raw.status_code, raw.text

    def parse_envelope(self, text: str) -> Any:
        """Extract the model's JSON answer from choices[0].message.content.

        Args:
            text: Raw chat completion body

        Returns:
            Parsed JSON payload from the message content

        Raises:
            ResponseParseError: If the envelope or the embedded JSON is invalid
        """
        try:
            body = json.loads(text)
        except json.JSONDecodeError as e:
            raise ResponseParseError(f"Router returned a non-JSON body: {e}", text) from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ResponseParseError(f"Router response has no message content: {e}", text) from e

        if isinstance(content, list):
            # Content-part arrays: keep the text parts only
            content = "".join(
                part.get("text", "") for part in content if isinstance(part, dict)
            )
        if not isinstance(content, str):
            return content
        return parse_json_text(content)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
