"""Error classification for provider failures.

Maps raw transport, SDK and parse failures into ErrorKind. The same kind
drives the fallback decision and the message shown to the operator, so
every ErrorKind must have an entry in USER_MESSAGES.
"""

import asyncio
import json

import httpx

from mailscan.extraction.errors import (
    MissingCredentialError,
    NetworkError,
    ResponseParseError,
    SchemaError,
    TransportError,
)
from mailscan.extraction.schema import ErrorKind

USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK: "Connection failed. Check your network connectivity and try again.",
    ErrorKind.RATE_LIMITED: "Too many requests. Wait a moment and retry.",
    ErrorKind.SERVICE_UNAVAILABLE: (
        "The address extraction service is temporarily unavailable. Try again shortly."
    ),
    ErrorKind.AUTH_FAILURE: (
        "Extraction service credentials are missing or invalid. Contact your administrator."
    ),
    ErrorKind.MALFORMED_RESPONSE: (
        "Could not read the address from the image. Retake the photo and try again."
    ),
    ErrorKind.MODEL_NOT_FOUND: (
        "The configured extraction model is unavailable. Choose another provider or model."
    ),
    ErrorKind.UNKNOWN: "Address extraction failed unexpectedly. Please try again.",
}

NETWORK_MARKERS = (
    "connection refused",
    "connection reset",
    "failed to fetch",
    "fetch failed",
    "networkerror",
    "net::err",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
    "temporary failure in name resolution",
    "cors policy",
    "cors request",
    "timed out",
)

AUTH_MARKERS = (
    "api key",
    "api_key",
    "apikey",
    "unauthorized",
    "invalid token",
    "missing credential",
    "permission denied",
)

_SERVICE_UNAVAILABLE_STATUSES = frozenset({502, 503, 504})
_AUTH_STATUSES = frozenset({401, 403})


def _classify_status(error: TransportError) -> ErrorKind:
    if error.status == 429:
        return ErrorKind.RATE_LIMITED
    if error.status in _SERVICE_UNAVAILABLE_STATUSES:
        return ErrorKind.SERVICE_UNAVAILABLE
    if error.status == 404 and error.model_endpoint:
        return ErrorKind.MODEL_NOT_FOUND
    if error.status in _AUTH_STATUSES:
        return ErrorKind.AUTH_FAILURE
    return ErrorKind.UNKNOWN


def classify(error: BaseException) -> ErrorKind:
    """Classify a provider failure.

    Typed errors are matched first; untyped errors fall back to message
    markers since upstream libraries report many failures as plain strings.

    Args:
        error: Exception raised while calling or parsing a provider

    Returns:
        ErrorKind for fallback decisions and user messaging
    """
    if isinstance(error, TransportError):
        return _classify_status(error)
    if isinstance(error, MissingCredentialError):
        return ErrorKind.AUTH_FAILURE
    if isinstance(error, (NetworkError, httpx.TransportError, asyncio.TimeoutError)):
        return ErrorKind.NETWORK
    if isinstance(error, (ResponseParseError, SchemaError, json.JSONDecodeError)):
        return ErrorKind.MALFORMED_RESPONSE

    message = str(error).lower()
    if any(marker in message for marker in NETWORK_MARKERS):
        return ErrorKind.NETWORK
    if any(marker in message for marker in AUTH_MARKERS):
        return ErrorKind.AUTH_FAILURE
    return ErrorKind.UNKNOWN


def user_message(kind: ErrorKind) -> str:
    """Get the operator-facing message for an error kind.

    Args:
        kind: Classified error kind

    Returns:
        Human-readable message template
    """
    return USER_MESSAGES[kind]
