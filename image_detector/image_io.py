"""Image decoding, scaling and encoding helpers.

Images travel through the service as RGB Pillow images. Camera frames arrive
from OpenCV as BGR ``numpy`` arrays and are converted at the boundary.
"""

import logging
from io import BytesIO
from typing import Tuple

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

from image_detector.config import PREVIEW_JPEG_QUALITY
from image_detector.errors import DecodeError

logger = logging.getLogger(__name__)


def decode_image(data: bytes) -> Image.Image:
    """Decode raw file bytes into an RGB image, honoring EXIF orientation."""
    if not data:
        raise DecodeError("Image file is empty")
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            return img.convert("RGB")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError) as e:
        logger.warning("Image decode failed: %s", e)
        raise DecodeError(f"Could not decode image: {e}") from e


def fit_scale(width: int, height: int, max_width: int, max_height: int) -> float:
    """Uniform factor that fits (width, height) into the bound; never upscales."""
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid image size: {width}x{height}")
    return min(1.0, max_width / width, max_height / height)


def fit_size(width: int, height: int, max_width: int, max_height: int) -> Tuple[int, int]:
    scale = fit_scale(width, height, max_width, max_height)
    if scale == 1.0:
        return width, height
    # rounding must never push a side over its bound
    out_w = max(1, min(max_width, int(round(width * scale))))
    out_h = max(1, min(max_height, int(round(height * scale))))
    return out_w, out_h


def resize_to_fit(img: Image.Image, max_width: int, max_height: int) -> Image.Image:
    """Return a copy of ``img`` scaled down to fit the bound, keeping aspect ratio."""
    size = fit_size(img.width, img.height, max_width, max_height)
    if size == img.size:
        return img.copy()
    return img.resize(size, Image.LANCZOS)


def frame_to_image(frame: np.ndarray) -> Image.Image:
    """Convert an OpenCV BGR frame into an RGB Pillow image."""
    if frame is None or frame.size == 0:
        raise DecodeError("Empty camera frame")
    if frame.ndim == 2:
        rgb = cv2.cvtColor(frame, cv2.COLOR_GRAY2RGB)
    else:
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
    return Image.fromarray(rgb)


def encode_jpeg(img: Image.Image, quality: int = PREVIEW_JPEG_QUALITY) -> bytes:
    buf = BytesIO()
    img.convert("RGB").save(buf, format="JPEG", quality=quality)
    return buf.getvalue()


def encode_frame_jpeg(frame: np.ndarray, quality: int = PREVIEW_JPEG_QUALITY) -> bytes:
    ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, quality])
    if not ok:
        raise DecodeError("cv2.imencode() failed to encode camera frame")
    return buf.tobytes()
