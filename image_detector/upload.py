"""Upload flow: validate → decode → publish as the current image."""

import asyncio
import logging
import time
from typing import Optional

from image_detector.config import MAX_UPLOAD_BYTES
from image_detector.errors import ValidationError
from image_detector.image_io import decode_image
from image_detector.state import AppState, ImageBuffer

logger = logging.getLogger(__name__)


def validate_upload(
    content_type: Optional[str],
    size: int,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> None:
    if not content_type or not content_type.lower().startswith("image/"):
        raise ValidationError("Please select an image file.")
    if size > max_bytes:
        raise ValidationError(
            f"Image is too large ({size / (1024 * 1024):.1f} MB). "
            f"Maximum size is {max_bytes / (1024 * 1024):.0f} MB."
        )


async def handle_upload(
    state: AppState,
    filename: Optional[str],
    content_type: Optional[str],
    data: bytes,
    max_bytes: int = MAX_UPLOAD_BYTES,
) -> ImageBuffer:
    """
    Turn an uploaded file into the current image.

    Validation and decode failures leave ``state`` untouched; the camera
    session, if any, is never touched.
    """
    async with state.operation("upload"):
        validate_upload(content_type, len(data), max_bytes)

        start = time.time()
        logger.info(
            "[UPLOAD] Decoding %s (content_type=%s, bytes=%s)",
            filename,
            content_type,
            len(data),
        )
        image = await asyncio.to_thread(decode_image, data)
        buffer = ImageBuffer(image=image, source="upload")
        await state.publish(buffer)
        logger.info(
            "[UPLOAD] Done in %sms: natural=%sx%s, displayed=%s",
            round((time.time() - start) * 1000, 2),
            buffer.width,
            buffer.height,
            state.surface.size,
        )
        return buffer
