"""Observability sink for raw provider responses and fallback hops.

Debugging panels show what a provider actually answered. Emission is
fire-and-forget: a sink must never block or fail the extraction pipeline.
"""

import logging
from collections import deque
from datetime import datetime, timezone
from typing import Protocol

from pydantic import BaseModel, Field

from mailscan.extraction.schema import ErrorKind, ProviderId

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RawResponseEvent(BaseModel):
    """Raw provider answer, recorded before it is interpreted."""

    provider: ProviderId
    http_status: int
    raw_response_text: str
    emitted_at: datetime = Field(default_factory=_utcnow)


class FallbackEvent(BaseModel):
    """The orchestrator moved from one provider to the next."""

    from_provider: ProviderId
    to_provider: ProviderId
    error_kind: ErrorKind
    emitted_at: datetime = Field(default_factory=_utcnow)


ExtractionEvent = RawResponseEvent | FallbackEvent


class EventSink(Protocol):
    """Receiver of extraction events."""

    def emit(self, event: ExtractionEvent) -> None: ...


class LoggingEventSink:
    """Sink writing events to the module logger at DEBUG level."""

    def emit(self, event: ExtractionEvent) -> None:
        if isinstance(event, RawResponseEvent):
            logger.debug(
                "Raw %s response (HTTP %d): %s",
                event.provider.value,
                event.http_status,
                event.raw_response_text[:2000],
            )
        else:
            logger.debug(
                "Fallback %s -> %s after %s",
                event.from_provider.value,
                event.to_provider.value,
                event.error_kind.value,
            )


class QueueEventSink:
    """Bounded in-memory sink for UI debugging panels.

    Backed by a deque with maxlen: appends never block and drop the oldest
    event when full. append and popleft are atomic, so the API may drain
    from a worker thread while the event loop emits.
    """

    def __init__(self, maxsize: int = 100) -> None:
        self.buffer: deque[ExtractionEvent] = deque(maxlen=maxsize)

    def emit(self, event: ExtractionEvent) -> None:
        self.buffer.append(event)

    def drain(self) -> list[ExtractionEvent]:
        """Remove and return all buffered events, oldest first."""
        events: list[ExtractionEvent] = []
        while True:
            try:
                events.append(self.buffer.popleft())
            except IndexError:
                return events


def safe_emit(sink: EventSink | None, event: ExtractionEvent) -> None:
    """Emit an event, logging (never raising) sink failures.

    Args:
        sink: Event sink, or None to skip emission
        event: Event to emit
    """
    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception as e:
        logger.warning(f"Event sink failed for {type(event).__name__}: {e}")
