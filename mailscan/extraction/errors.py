"""Exceptions raised by extraction providers and the response normalizer.

Providers translate every transport or SDK failure into one of these types
so that ErrorClassifier never has to know which client library was used.
"""


class ExtractionError(Exception):
    """Base class for provider and normalization failures."""


class TransportError(ExtractionError):
    """Provider answered with a non-2xx HTTP status.

    Attributes:
        status: HTTP status code
        body: Response body text (untrusted, for logs only)
        model_endpoint: True when the call targeted a model-invocation endpoint,
            where a 404 means the model itself is unavailable
    """

    def __init__(self, status: int, body: str = "", *, model_endpoint: bool = False) -> None:
        self.status = status
        self.body = body
        self.model_endpoint = model_endpoint
        super().__init__(f"HTTP {status}: {body[:200]}")


class NetworkError(ExtractionError):
    """Provider could not be reached (connection, DNS, timeout)."""

    def __init__(self, cause: BaseException | str) -> None:
        self.cause = cause
        super().__init__(f"Network failure: {cause}")


class ResponseParseError(ExtractionError):
    """Response text could not be parsed as JSON after fence-stripping."""

    def __init__(self, message: str, raw_text: str = "") -> None:
        self.raw_text = raw_text
        super().__init__(message)


class SchemaError(ExtractionError):
    """Parsed payload is not an object an ExtractionRecord can be built from."""


class MissingCredentialError(ExtractionError):
    """Provider was invoked without its required credential or endpoint."""
