"""
Upload validation and image decoding.

Limits on type and size are checked before any model work so that a bad
upload never reaches the segmentation session.
"""

from __future__ import annotations

from io import BytesIO
import logging
from typing import Optional

from PIL import Image, ImageOps

logger = logging.getLogger(__name__)

INVALID_FILE_MESSAGE = "Please choose a valid image file (JPG, PNG, WEBP, ...)"


class UploadRejected(ValueError):
    """Raised when an upload fails validation; `message` is safe to show."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _format_limit(max_bytes: int) -> str:
    megabytes = max_bytes / (1024 * 1024)
    if megabytes >= 1:
        return f"{megabytes:g}MB"
    return f"{max_bytes // 1024}KB"


def validate_upload(content_type: Optional[str], size: int, max_bytes: int) -> None:
    """Reject non-image content types, empty files and files above `max_bytes`."""
    if not content_type or not content_type.startswith("image/"):
        raise UploadRejected(INVALID_FILE_MESSAGE)
    if size <= 0:
        raise UploadRejected("The uploaded file is empty")
    if size > max_bytes:
        raise UploadRejected(f"Image file must not exceed {_format_limit(max_bytes)}", status_code=413)


def decode_image(image_bytes: bytes) -> Image.Image:
    """
    Decode an uploaded image and apply its EXIF orientation.

    The image is loaded eagerly so truncated or corrupt files fail here
    rather than inside the model session.
    """
    try:
        image = Image.open(BytesIO(image_bytes))
        image.load()
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Invalid image data") from exc

    try:
        return ImageOps.exif_transpose(image)
    except Exception as exc:  # noqa: BLE001
        # Malformed orientation metadata keeps the image as stored.
        logger.warning("Ignoring unreadable EXIF orientation: %s", exc)
        return image
