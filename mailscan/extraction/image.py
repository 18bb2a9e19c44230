"""Envelope image loading.

Callers hand over raw bytes, plain base64, or a data URL (what a browser
canvas export produces). Providers need raw bytes plus a MIME type.
"""

import base64
import binascii
import io
import logging
import re

from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/png"

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?:;[\w=-]+)*;base64,(?P<data>.*)$", re.S)

_FORMAT_EXTENSIONS = {
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/webp": "webp",
    "image/gif": "gif",
    "image/bmp": "bmp",
    "image/tiff": "tiff",
}


class EnvelopeImage(BaseModel):
    """Image bytes with their detected MIME type."""

    data: bytes
    mime_type: str = DEFAULT_MIME_TYPE

    @property
    def base64(self) -> str:
        """Base64 encoding of the image bytes."""
        return base64.b64encode(self.data).decode("ascii")

    @property
    def data_url(self) -> str:
        """Image as a data: URI."""
        return f"data:{self.mime_type};base64,{self.base64}"

    @property
    def filename(self) -> str:
        """Upload filename matching the MIME type."""
        return f"envelope.{_FORMAT_EXTENSIONS.get(self.mime_type, 'png')}"


def detect_mime_type(data: bytes) -> str:
    """Detect image MIME type from content.

    Args:
        data: Image bytes

    Returns:
        MIME type reported by Pillow, DEFAULT_MIME_TYPE when unrecognized
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            mime = Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError):
        mime = None

    if mime is None:
        logger.debug("Could not identify image format, assuming %s", DEFAULT_MIME_TYPE)
        return DEFAULT_MIME_TYPE
    return mime


def load_image(image: bytes | str) -> EnvelopeImage:
    """Load an envelope image from bytes, base64 or a data URL.

    Args:
        image: Raw bytes, base64 text, or data: URL

    Returns:
        EnvelopeImage with decoded bytes and MIME type

    Raises:
        ValueError: If the image is empty or the text is not valid base64
    """
    if isinstance(image, str):
        text = image.strip()
        match = _DATA_URL.match(text)
        if match:
            text = match.group("data")
        try:
            data = base64.b64decode(text, validate=False)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Image text is not valid base64: {e}") from e
    else:
        data = bytes(image)

    if not data:
        raise ValueError("Empty image provided")

    return EnvelopeImage(data=data, mime_type=detect_mime_type(data))
