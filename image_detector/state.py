"""Application state shared by the upload, capture and detection flows."""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Optional

from PIL import Image

from image_detector.errors import AlreadyInProgressError
from image_detector.surface import DisplaySurface

if TYPE_CHECKING:
    from image_detector.camera import CameraSession
    from image_detector.classifier import ModelHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageBuffer:
    """Decoded RGB bitmap plus its natural size. Never mutated after creation."""

    image: Image.Image
    source: str

    @property
    def width(self) -> int:
        return self.image.width

    @property
    def height(self) -> int:
        return self.image.height


@dataclass
class AppState:
    surface: DisplaySurface = field(default_factory=DisplaySurface)
    model: Optional["ModelHandle"] = None
    current_image: Optional[ImageBuffer] = None
    camera: Optional["CameraSession"] = None
    _busy: Optional[str] = field(default=None, repr=False)

    @property
    def busy(self) -> Optional[str]:
        return self._busy

    @asynccontextmanager
    async def operation(self, name: str) -> AsyncIterator[None]:
        """
        Run one mutating operation at a time.

        A second operation entered while one is still awaiting raises
        AlreadyInProgressError instead of queueing.
        """
        if self._busy is not None:
            logger.warning("Rejected %s: %s still in progress", name, self._busy)
            raise AlreadyInProgressError(
                f"Cannot start {name}: {self._busy} is still in progress."
            )
        self._busy = name
        try:
            yield
        finally:
            self._busy = None

    async def publish(self, buffer: ImageBuffer) -> None:
        """Make ``buffer`` the current image and show it on the surface."""
        # full-resolution resize runs off the event loop
        await asyncio.to_thread(self.surface.draw, buffer.image)
        self.current_image = buffer
        logger.info(
            "Current image replaced (source=%s, size=%sx%s)",
            buffer.source,
            buffer.width,
            buffer.height,
        )

    def snapshot(self) -> Dict[str, Any]:
        img = self.current_image
        return {
            "model_loaded": self.model is not None,
            "model_url": self.model.base_url if self.model is not None else None,
            "labels": list(self.model.labels) if self.model is not None else [],
            "current_image": (
                {"source": img.source, "width": img.width, "height": img.height}
                if img is not None
                else None
            ),
            "display_size": list(self.surface.size) if self.surface.size else None,
            "camera_active": self.camera is not None and self.camera.active,
            "busy": self._busy,
        }
