"""Factory for creating provider adapters and the extraction orchestrator.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22

Credential presence is evaluated once here, when the orchestrator is built,
instead of lazily per call.
"""

import logging

from mailscan.extraction.base import ProviderAdapter
from mailscan.extraction.events import EventSink
from mailscan.extraction.gemini_provider import GeminiProvider
from mailscan.extraction.huggingface_provider import HuggingFaceProvider
from mailscan.extraction.orchestrator import ExtractionOrchestrator
from mailscan.extraction.policy import FallbackPolicy
from mailscan.extraction.scan_provider import ScanServiceProvider
from mailscan.extraction.schema import ProviderId
from mailscan.shared.config import Settings
from mailscan.storage.service import ScanStore

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available extraction providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ProviderAdapter]] = {
        ProviderId.SCAN.value: ScanServiceProvider,
        ProviderId.HUGGINGFACE.value: HuggingFaceProvider,
        ProviderId.GEMINI.value: GeminiProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ProviderAdapter]) -> None:
        """Register a provider implementation.

        Args:
            name: Provider identifier (must be a ProviderId value)
            provider_class: Class implementing ProviderAdapter
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered extraction provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ProviderAdapter]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing ProviderAdapter

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown extraction provider: '{name}'. " f"Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names.

        Returns:
            List of provider names
        """
        return list(cls._providers.keys())


def create_provider(
    name: str, settings: Settings, event_sink: EventSink | None = None
) -> ProviderAdapter:
    """Instantiate one provider adapter by name.

    Args:
        name: Provider identifier
        settings: Application settings
        event_sink: Receiver of raw-response events

    Returns:
        Configured provider adapter

    Raises:
        ValueError: If provider is unknown
    """
    provider = ProviderRegistry.get_provider_class(name)(settings, event_sink)

    if not provider.is_available():
        logger.warning(
            f"Extraction provider '{name}' is not configured and will be skipped. "
            f"Check configuration (API keys, scan service URL)."
        )
    return provider


def create_orchestrator(
    settings: Settings,
    store: ScanStore | None = None,
    event_sink: EventSink | None = None,
) -> ExtractionOrchestrator:
    """Factory function to create the extraction orchestrator from configuration.

    Builds one adapter per entry of settings.provider_order and a fallback
    policy over that order.

    Args:
        settings: Application settings
        store: Row store receiving completed scans
        event_sink: Receiver of raw-response and fallback events

    Returns:
        Configured ExtractionOrchestrator

    Example:
        >>> settings = Settings(gemini_api_key="...")
        >>> orchestrator = create_orchestrator(settings)
        >>> outcome = await orchestrator.extract(image_bytes)
    """
    order = [ProviderId(name) for name in settings.provider_order]
    adapters = {
        provider: create_provider(provider.value, settings, event_sink) for provider in order
    }
    policy = FallbackPolicy(order, max_hops=settings.max_fallback_hops)

    orchestrator = ExtractionOrchestrator(adapters, policy, store=store, event_sink=event_sink)
    configured = ", ".join(p.value for p in orchestrator.configured_providers) or "none"
    logger.info(
        f"Created extraction orchestrator: order={settings.provider_order}, "
        f"configured={configured}, max_fallback_hops={settings.max_fallback_hops}"
    )
    return orchestrator
