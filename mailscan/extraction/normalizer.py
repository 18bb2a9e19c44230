"""Response normalization into the canonical ExtractionRecord.

Every provider hands over a pre-shaped payload (fences stripped, JSON parsed).
This module never branches on which provider produced it: vocabulary
differences are absorbed by the alias table below.
"""

import json
import math
import re
from typing import Any

from mailscan.extraction.errors import ResponseParseError, SchemaError
from mailscan.extraction.schema import ExtractionRecord

# Target field -> accepted source keys, first non-empty value wins.
# Canonical names come first so normalizing a dumped record is a no-op.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "recipient": ("recipient", "name"),
    "address_line": ("address_line", "address", "text"),
    "postal_code": ("postal_code", "pin_code", "zip", "pin"),
    "city": ("city",),
    "region": ("region", "state", "circle", "region_name"),
    "country": ("country",),
    "sorting_center_id": ("sorting_center_id",),
    "sorting_center_name": ("sorting_center_name",),
}

_FENCED_BLOCK = re.compile(r"```(?:json|JSON)?\s*([\s\S]*?)```")
_BARE_FENCE = re.compile(r"```(?:json|JSON)?")
_JSON_BLOCK = re.compile(r"[\{\[][\s\S]*[\}\]]")


def strip_fences(text: str) -> str:
    """Remove markdown code fences around model output.

    Args:
        text: Raw model output, e.g. ```json {...} ```

    Returns:
        Text between the first pair of fences, or the text with any stray
        fence markers removed
    """
    match = _FENCED_BLOCK.search(text)
    if match:
        return match.group(1).strip()
    return _BARE_FENCE.sub("", text).strip()


def parse_json_text(text: str) -> Any:
    """Extract and parse JSON from model output.

    Handles common LLM quirks like markdown code blocks and prose around the
    JSON object. Empty output parses as an empty object.

    Args:
        text: Raw response text

    Returns:
        Parsed JSON value

    Raises:
        ResponseParseError: If no valid JSON found
    """
    cleaned = strip_fences(text or "")
    if not cleaned:
        return {}

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        block = _JSON_BLOCK.search(cleaned)
        if block is None:
            raise ResponseParseError(f"Invalid JSON in provider response: {e}", text) from e
        try:
            return json.loads(block.group(0))
        except json.JSONDecodeError as inner:
            raise ResponseParseError(
                f"Invalid JSON in provider response: {inner}", text
            ) from inner


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normalize_confidence(value: Any) -> int:
    """Convert a reported confidence into an integer percentage.

    Values in (0, 1] are fractions and are scaled by 100; any other number is
    taken as already scaled. Absent, non-numeric and non-finite values are
    unknown and map to 0.

    Args:
        value: Confidence as reported by the provider

    Returns:
        Rounded confidence (not clamped; ExtractionRecord clamps to 0-100)
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    if 0 < value <= 1:
        return _round_half_up(value * 100)
    return _round_half_up(value)


def _text_value(payload: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = payload.get(key)
        if value is None or isinstance(value, (dict, list)):
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        text = str(value).strip()
        if text:
            return text
    return ""


def _select_object(payload: Any) -> dict[str, Any]:
    if isinstance(payload, dict):
        return payload
    if isinstance(payload, list):
        for candidate in payload:
            if isinstance(candidate, dict):
                return candidate
        raise SchemaError("Provider returned no object among its candidate outputs")
    raise SchemaError(f"Expected a JSON object, got {type(payload).__name__}")


def normalize(payload: Any) -> ExtractionRecord:
    """Build an ExtractionRecord from a parsed provider payload.

    Args:
        payload: Parsed JSON value (object, or array of candidate objects)

    Returns:
        Canonical record; missing fields default to empty strings and 0

    Raises:
        SchemaError: If the payload is not an object and holds no object candidate
    """
    data = _select_object(payload)
    fields = {target: _text_value(data, keys) for target, keys in FIELD_ALIASES.items()}
    return ExtractionRecord(**fields, confidence=normalize_confidence(data.get("confidence")))
