import logging
from threading import Lock
from typing import Optional, Tuple

from PIL import Image

from image_detector.config import DISPLAY_MAX_HEIGHT, DISPLAY_MAX_WIDTH
from image_detector.image_io import encode_jpeg, resize_to_fit

logger = logging.getLogger(__name__)


class DisplaySurface:
    """
    Bounded preview canvas.

    Whatever is drawn is scaled so that both sides stay within
    (max_width, max_height) with the source aspect ratio preserved.
    Drawing replaces the previous content.
    """

    def __init__(self, max_width: int = DISPLAY_MAX_WIDTH, max_height: int = DISPLAY_MAX_HEIGHT):
        if max_width <= 0 or max_height <= 0:
            raise ValueError(f"Invalid surface bound: {max_width}x{max_height}")
        self.max_width = max_width
        self.max_height = max_height
        self._image: Optional[Image.Image] = None
        self._lock = Lock()

    @property
    def image(self) -> Optional[Image.Image]:
        return self._image

    @property
    def size(self) -> Optional[Tuple[int, int]]:
        img = self._image
        return img.size if img is not None else None

    def draw(self, img: Image.Image) -> Tuple[int, int]:
        scaled = resize_to_fit(img, self.max_width, self.max_height)
        with self._lock:
            self._image = scaled
        logger.debug(
            "Surface drawn: source=%sx%s, displayed=%sx%s",
            img.width,
            img.height,
            scaled.width,
            scaled.height,
        )
        return scaled.size

    def clear(self) -> None:
        with self._lock:
            self._image = None

    def to_jpeg(self) -> Optional[bytes]:
        with self._lock:
            img = self._image
        if img is None:
            return None
        return encode_jpeg(img)
