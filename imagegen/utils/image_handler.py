# imagegen/utils/image_handler.py
"""Image payload decoding utilities.

Turns raw bytes returned by the generation service into a verified
ImageData container. Decoding uses Pillow so that truncated or non-image
payloads (HTML error pages, JSON bodies) are rejected before they reach
the cache.
"""

import io
import logging
from dataclasses import dataclass

from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

# Pillow format name -> MIME type for the formats the service returns
_FORMAT_MIME_TYPES = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


class ImageDecodeError(ValueError):
    """Raised when a payload cannot be decoded as an image."""


@dataclass
class ImageData:
    """Container for a decoded image payload.

    Attributes:
        data: Raw image bytes as received.
        mime_type: MIME type of the image (e.g., "image/png").
        width: Pixel width reported by the decoder.
        height: Pixel height reported by the decoder.
    """

    data: bytes
    mime_type: str
    width: int = 0
    height: int = 0

    @property
    def size_bytes(self) -> int:
        return len(self.data)


def decode_image(data: bytes, mime_type: str | None = None) -> ImageData:
    """Decode and verify an image payload.

    Args:
        data: Raw payload bytes.
        mime_type: Content-Type reported by the server, used only when the
            decoder cannot name the format itself.

    Returns:
        ImageData with dimensions and a normalized MIME type.

    Raises:
        ImageDecodeError: If the payload is empty or not a readable image.
    """
    if not data:
        raise ImageDecodeError("Empty image payload")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.verify()
            image_format = img.format
            width, height = img.size
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ImageDecodeError(f"Payload is not a valid image: {e}") from e

    resolved = _FORMAT_MIME_TYPES.get(image_format or "")
    if resolved is None:
        if mime_type and mime_type.startswith("image/"):
            resolved = mime_type.split(";")[0].strip()
        else:
            resolved = "image/png"

    logger.debug(
        "Decoded %s image %dx%d (%d bytes)", resolved, width, height, len(data)
    )
    return ImageData(data=data, mime_type=resolved, width=width, height=height)
