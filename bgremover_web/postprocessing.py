"""Compose the requested output from a segmentation mask and encode it."""

from __future__ import annotations

from io import BytesIO
import logging

import numpy as np
from PIL import Image

from .schemas import OutputFormat, OutputType, ResultBlob

logger = logging.getLogger(__name__)

_PIL_FORMATS = {
    OutputFormat.PNG: "PNG",
    OutputFormat.JPEG: "JPEG",
    OutputFormat.WEBP: "WEBP",
}

# JPEG has no alpha channel; transparent pixels are flattened onto this.
JPEG_MATTE = (255, 255, 255)


def quality_to_pil(quality: float) -> int:
    """Map a 0..1 quality onto Pillow's 0..100 scale."""
    return int(round(float(np.clip(quality, 0.0, 1.0)) * 100))


def compose_output(image: Image.Image, mask: Image.Image, output_type: OutputType) -> Image.Image:
    """
    Build the result image for `output_type`.

    foreground: RGBA with the mask as alpha.
    background: RGBA with the inverted mask as alpha.
    mask: the single-channel mask itself.
    """
    mask = mask.convert("L")
    if mask.size != image.size:
        logger.debug("compose: resizing mask %s to image %s", mask.size, image.size)
        mask = mask.resize(image.size, Image.BILINEAR)

    alpha_u8 = np.asarray(mask, dtype=np.uint8)
    if output_type == OutputType.MASK:
        return Image.fromarray(alpha_u8)

    if output_type == OutputType.BACKGROUND:
        alpha_u8 = 255 - alpha_u8

    rgb_np = np.asarray(image.convert("RGB"), dtype=np.uint8)
    rgba = np.dstack((rgb_np, alpha_u8))
    return Image.fromarray(rgba)


def encode_image(image: Image.Image, output_format: OutputFormat, quality: float) -> ResultBlob:
    """Encode `image` as `output_format`; quality only applies to lossy formats."""
    buf = BytesIO()
    if output_format == OutputFormat.PNG:
        image.save(buf, format="PNG")
    else:
        if output_format == OutputFormat.JPEG and image.mode in ("RGBA", "LA"):
            flat = Image.new("RGB", image.size, JPEG_MATTE)
            flat.paste(image.convert("RGBA"), mask=image.getchannel("A"))
            image = flat
        image.save(buf, format=_PIL_FORMATS[output_format], quality=quality_to_pil(quality))
    return ResultBlob(data=buf.getvalue(), media_type=output_format.value)

