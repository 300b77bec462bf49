"""
High-level background-removal pipeline.

`process_image` is the main entry point used by both the HTTP API and the
local test script. It keeps orchestration simple:
bytes in -> ensure model -> decode -> rembg mask -> compose -> encoded bytes out.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from PIL import Image
from rembg import remove

from .model_loader import ModelManager, get_model_manager
from .postprocessing import compose_output, encode_image
from .preprocessing import INVALID_FILE_MESSAGE, decode_image
from .schemas import RemovalConfig, ResultBlob

logger = logging.getLogger(__name__)

INFERENCE_FAILED_MESSAGE = "Background removal failed, please retry"


class InferenceFailed(Exception):
    """
    Background removal could not produce a result.

    `message` is generic and safe to show to users; the underlying error is
    chained as `__cause__` for logs and callers that need it.
    """

    def __init__(self, kind: str = "inference_failed", message: str = INFERENCE_FAILED_MESSAGE):
        super().__init__(message)
        self.kind = kind
        self.message = message


def _run_removal(image: Image.Image, session: object, removal_config: RemovalConfig) -> ResultBlob:
    """Run the segmentation session and build the encoded output."""
    output = removal_config.output
    diag_level = logging.INFO if removal_config.debug else logging.DEBUG

    started = time.perf_counter()
    mask = remove(image, session=session, only_mask=True)
    logger.log(diag_level, "rembg mask for %sx%s image in %.3fs", image.width, image.height, time.perf_counter() - started)

    composed = compose_output(image, mask, output.type)
    blob = encode_image(composed, output.format, output.quality)
    logger.log(
        diag_level,
        "encoded %s as %s (quality=%.2f, %d bytes)",
        output.type.value,
        output.format.value,
        output.quality,
        len(blob.data),
    )
    return blob


async def process_image(
    image_bytes: bytes,
    removal_config: RemovalConfig,
    manager: Optional[ModelManager] = None,
) -> ResultBlob:
    """
    Remove the background from `image_bytes` according to `removal_config`.

    Loads the model first when it is not ready for this configuration; load
    failures propagate unchanged.

    Raises:
        InferenceFailed: when the upload cannot be decoded (kind
            "invalid_image") or removal itself fails (kind "inference_failed").
    """
    manager = manager or get_model_manager()
    if not manager.is_ready(removal_config):
        await manager.load(removal_config)

    try:
        image = decode_image(image_bytes)
    except ValueError as exc:
        logger.warning("Rejected undecodable image: %s", exc.__cause__ or exc)
        raise InferenceFailed(kind="invalid_image", message=INVALID_FILE_MESSAGE) from exc

    try:
        return await run_in_threadpool(_run_removal, image, manager.session, removal_config)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Background removal failed: %s", exc)
        raise InferenceFailed() from exc
