"""Extraction orchestration across providers.

Runs one extraction as a sequential state machine:

    Idle -> Attempting(p) -> Succeeded
                          -> Deciding(kind, tried) -> Attempting(next) | Exhausted

Provider calls are never fanned out: each hop awaits the previous one. Every
extract() call owns its attempt list; the adapters, policy and credential
map are shared and read-only during a call.
"""

import asyncio
import logging
import time
from collections.abc import Mapping
from datetime import datetime, timezone

from mailscan.extraction.base import ProviderAdapter
from mailscan.extraction.classifier import classify, user_message
from mailscan.extraction.events import EventSink, FallbackEvent, safe_emit
from mailscan.extraction.image import EnvelopeImage, load_image
from mailscan.extraction.normalizer import normalize
from mailscan.extraction.policy import AvailabilityCheck, FallbackPolicy
from mailscan.extraction.schema import (
    AttemptRecord,
    ErrorKind,
    ExtractionOptions,
    ExtractionOutcome,
    ExtractionRecord,
    ProviderId,
)
from mailscan.shared import metrics
from mailscan.storage.service import ScanStore

logger = logging.getLogger(__name__)


class ExtractionOrchestrator:
    """Drives providers through the fallback chain for one image at a time.

    Credential presence is read once at construction; the only per-call
    input to availability is the scan endpoint override.
    """

    def __init__(
        self,
        adapters: Mapping[ProviderId, ProviderAdapter],
        policy: FallbackPolicy,
        store: ScanStore | None = None,
        event_sink: EventSink | None = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            adapters: Provider adapters keyed by provider id
            policy: Fallback policy deciding the provider sequence
            store: Row store receiving completed scans (optional)
            event_sink: Receiver of fallback events (optional)
        """
        self.adapters = dict(adapters)
        self.policy = policy
        self.store = store
        self.event_sink = event_sink
        self._configured = frozenset(
            provider for provider, adapter in self.adapters.items() if adapter.is_available()
        )

    @property
    def configured_providers(self) -> list[ProviderId]:
        """Providers with credentials, in policy order."""
        return [p for p in self.policy.order if p in self._configured]

    def _availability(self, options: ExtractionOptions) -> AvailabilityCheck:
        override = options.override_endpoint

        def is_available(provider: ProviderId) -> bool:
            if provider in self._configured:
                return True
            adapter = self.adapters.get(provider)
            return bool(override) and adapter is not None and adapter.is_available(override)

        return is_available

    async def _attempt(
        self,
        provider: ProviderId,
        image: EnvelopeImage,
        options: ExtractionOptions,
        model_hint: str | None,
    ) -> ExtractionRecord:
        invocation = self.adapters[provider].invoke(
            image, model_hint=model_hint, endpoint=options.override_endpoint
        )
        if options.timeout_seconds is not None:
            response = await asyncio.wait_for(invocation, timeout=options.timeout_seconds)
        else:
            response = await invocation
        return normalize(response.payload)

    async def _persist(self, record: ExtractionRecord) -> str | None:
        if self.store is None:
            return None

        try:
            result = await asyncio.to_thread(self.store.insert, record, "completed")
        except Exception as e:
            logger.error(f"Scan store insert raised, returning extraction anyway: {e}")
            metrics.store_failures_total.inc()
            return None

        if not result.success:
            logger.error(f"Scan store insert failed, returning extraction anyway: {result.error}")
            metrics.store_failures_total.inc()
            return None
        return result.row_id

    async def extract(
        self,
        image: bytes | str,
        options: ExtractionOptions | None = None,
    ) -> ExtractionOutcome:
        """Extract an address record from an envelope image.

        Args:
            image: Raw image bytes, base64 text or data URL
            options: Preferred provider, model hint, endpoint override, timeout

        Returns:
            ExtractionOutcome with the record, or the user-facing error once
            the fallback chain is exhausted

        Raises:
            ValueError: If the image is empty or undecodable
        """
        options = options or ExtractionOptions()
        envelope = load_image(image)
        is_available = self._availability(options)
        preferred = options.preferred_provider
        attempts: list[AttemptRecord] = []

        provider = self.policy.first_provider(is_available, preferred)
        if provider is None:
            logger.error("No extraction provider is configured")
            metrics.extractions_total.labels(status="exhausted").inc()
            return ExtractionOutcome(
                success=False,
                error_kind=ErrorKind.AUTH_FAILURE,
                error=user_message(ErrorKind.AUTH_FAILURE),
            )

        starting_provider = provider
        last_kind = ErrorKind.UNKNOWN
        last_provider = provider

        while provider is not None:
            model_hint = options.model_hint if provider == starting_provider else None
            started_at = datetime.now(timezone.utc)
            start = time.monotonic()

            try:
                record = await self._attempt(provider, envelope, options, model_hint)
            except Exception as e:
                duration = time.monotonic() - start
                kind = classify(e)
                attempts.append(
                    AttemptRecord(
                        provider=provider,
                        started_at=started_at,
                        outcome="failure",
                        error_kind=kind,
                        duration_ms=int(duration * 1000),
                    )
                )
                metrics.provider_attempts_total.labels(
                    provider=provider.value, outcome="failure", error_kind=kind.value
                ).inc()
                metrics.provider_call_duration_seconds.labels(provider=provider.value).observe(
                    duration
                )
                logger.warning(f"Provider '{provider.value}' failed ({kind.value}): {e}")

                last_kind, last_provider = kind, provider
                next_provider = self.policy.next_provider(
                    provider,
                    kind,
                    [a.provider for a in attempts],
                    is_available,
                    preferred,
                )
                if next_provider is not None:
                    logger.info(f"Falling back from '{provider.value}' to '{next_provider.value}'")
                    metrics.fallback_hops_total.labels(
                        from_provider=provider.value, to_provider=next_provider.value
                    ).inc()
                    safe_emit(
                        self.event_sink,
                        FallbackEvent(
                            from_provider=provider, to_provider=next_provider, error_kind=kind
                        ),
                    )
                provider = next_provider
                continue

            duration = time.monotonic() - start
            attempts.append(
                AttemptRecord(
                    provider=provider,
                    started_at=started_at,
                    outcome="success",
                    duration_ms=int(duration * 1000),
                )
            )
            metrics.provider_attempts_total.labels(
                provider=provider.value, outcome="success", error_kind="none"
            ).inc()
            metrics.provider_call_duration_seconds.labels(provider=provider.value).observe(
                duration
            )
            metrics.extractions_total.labels(status="success").inc()
            logger.info(
                f"Extracted address via '{provider.value}' "
                f"(confidence={record.confidence}, attempts={len(attempts)})"
            )

            row_id = await self._persist(record)
            return ExtractionOutcome(
                success=True,
                record=record,
                provider=provider,
                attempts=attempts,
                row_id=row_id,
            )

        metrics.extractions_total.labels(status="exhausted").inc()
        logger.error(
            f"Extraction exhausted after {len(attempts)} attempt(s); "
            f"last failure {last_kind.value} from '{last_provider.value}'"
        )
        return ExtractionOutcome(
            success=False,
            provider=last_provider,
            error_kind=last_kind,
            error=user_message(last_kind),
            attempts=attempts,
        )

    async def aclose(self) -> None:
        """Close all provider adapters."""
        for adapter in self.adapters.values():
            await adapter.aclose()

    async def __aenter__(self) -> "ExtractionOrchestrator":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
