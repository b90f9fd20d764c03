# imagegen/utils/__init__.py
"""Utility functions for the image generation service."""

from imagegen.utils.image_client import ImagePayload, ImageServiceClient
from imagegen.utils.image_handler import ImageData, ImageDecodeError, decode_image
from imagegen.utils.logging import (
    configure_structured_logging,
    get_request_id,
    set_request_id,
)
from imagegen.utils.observability import setup_logfire

__all__ = [
    "ImageData",
    "ImageDecodeError",
    "ImagePayload",
    "ImageServiceClient",
    "configure_structured_logging",
    "decode_image",
    "get_request_id",
    "set_request_id",
    "setup_logfire",
]
