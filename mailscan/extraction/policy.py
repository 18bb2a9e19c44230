"""Fallback policy for the provider chain.

Pure decision functions: given what has been tried in one extraction and
which providers have their credentials, pick the next provider or report
exhaustion. No I/O, no randomness; the same inputs always give the same
provider sequence.

Termination: every decision picks a provider outside the tried set, and the
tried set only grows, so one extraction makes at most len(order) attempts.
"""

import logging
from collections.abc import Callable, Iterable, Sequence

from mailscan.extraction.schema import ErrorKind, ProviderId

logger = logging.getLogger(__name__)

AvailabilityCheck = Callable[[ProviderId], bool]


class FallbackPolicy:
    """Ordered, budgeted, no-revisit provider selection.

    Attributes:
        order: Canonical provider priority
        max_hops: Fallback hops allowed after the first attempt
        stop_on: Error kinds that end the chain immediately (empty by default)
    """

    def __init__(
        self,
        order: Sequence[ProviderId],
        max_hops: int = 2,
        stop_on: Iterable[ErrorKind] = (),
    ) -> None:
        if len(set(order)) != len(order):
            raise ValueError(f"Provider order contains duplicates: {list(order)}")
        self.order = tuple(order)
        self.max_hops = max_hops
        self.stop_on = frozenset(stop_on)

    def effective_order(self, preferred: ProviderId | None = None) -> tuple[ProviderId, ...]:
        """Get the priority order for one extraction.

        An explicit preference for a provider other than the default starting
        provider reverses the order.

        Args:
            preferred: Caller's preferred starting provider

        Returns:
            Provider priority for this call
        """
        if preferred is not None and self.order and preferred != self.order[0]:
            return tuple(reversed(self.order))
        return self.order

    def first_provider(
        self,
        is_available: AvailabilityCheck,
        preferred: ProviderId | None = None,
    ) -> ProviderId | None:
        """Pick the provider for the first attempt.

        The preferred provider is used when its credential is present;
        otherwise the first available provider in the effective order.

        Args:
            is_available: Credential presence predicate
            preferred: Caller's preferred starting provider

        Returns:
            Starting provider, or None when no provider is usable
        """
        if preferred is not None and is_available(preferred):
            return preferred
        if preferred is not None:
            logger.info(f"Preferred provider '{preferred.value}' not configured, skipping")
        for provider in self.effective_order(preferred):
            if is_available(provider):
                return provider
        return None

    def next_provider(
        self,
        failed: ProviderId,
        error_kind: ErrorKind,
        tried: Iterable[ProviderId],
        is_available: AvailabilityCheck,
        preferred: ProviderId | None = None,
    ) -> ProviderId | None:
        """Decide where to go after a failed attempt.

        Unavailable providers are skipped without consuming the hop budget.

        Args:
            failed: Provider whose attempt just failed
            error_kind: Classification of that failure
            tried: Providers already attempted in this extraction (including failed)
            is_available: Credential presence predicate
            preferred: Caller's preferred starting provider

        Returns:
            Next provider to attempt, or None when the chain is exhausted
        """
        tried_set = set(tried) | {failed}

        if error_kind in self.stop_on:
            logger.info(f"Not falling back after {error_kind.value} from '{failed.value}'")
            return None

        hops_used = len(tried_set) - 1
        if hops_used >= self.max_hops:
            logger.info(f"Fallback budget of {self.max_hops} hops spent")
            return None

        for provider in self.effective_order(preferred):
            if provider in tried_set:
                continue
            if not is_available(provider):
                logger.debug(f"Skipping provider '{provider.value}': credential absent")
                continue
            return provider
        return None
