"""
Capture flow: acquire a camera → live view → single snapshot → release.

A session is single-use: snapshot() always releases the device before it
returns, and only one session may be open at a time.
"""

import asyncio
import errno
import logging
import os
import sys
import threading
import time
from typing import Any, AsyncIterator, Callable, Optional

import cv2
import numpy as np

from image_detector.config import CAMERA_HEIGHT, CAMERA_INDEX, CAMERA_WIDTH, STREAM_FPS
from image_detector.errors import (
    CameraAccessError,
    CameraErrorKind,
    PreconditionError,
    SessionAlreadyActiveError,
)
from image_detector.image_io import encode_frame_jpeg, frame_to_image
from image_detector.state import AppState, ImageBuffer

logger = logging.getLogger(__name__)

MJPEG_BOUNDARY = "frame"

CaptureFactory = Callable[[int], Any]
DeviceCheck = Callable[[int], bool]


def _default_capture_factory(index: int) -> Any:
    return cv2.VideoCapture(index)


def classify_camera_failure(exc: BaseException) -> CameraErrorKind:
    """Map a low-level camera failure onto one of the user-facing classes."""
    if isinstance(exc, OSError) and exc.errno is not None:
        if exc.errno in (errno.ENOENT, errno.ENODEV, errno.ENXIO):
            return CameraErrorKind.NO_DEVICE
        if exc.errno in (errno.EACCES, errno.EPERM):
            return CameraErrorKind.PERMISSION_DENIED
        if exc.errno == errno.EBUSY:
            return CameraErrorKind.DEVICE_BUSY

    text = str(exc).lower()
    if "permission" in text or "denied" in text or "not authorized" in text:
        return CameraErrorKind.PERMISSION_DENIED
    if "busy" in text or "in use" in text:
        return CameraErrorKind.DEVICE_BUSY
    if "no such device" in text or "not found" in text:
        return CameraErrorKind.NO_DEVICE
    return CameraErrorKind.OTHER


def check_device(index: int) -> bool:
    """
    Check the V4L2 device node before opening it.

    OpenCV only reports "not opened", so on Linux the node is inspected to tell
    a missing device from a permission problem. Returns True when the node was
    verified, False on platforms where the node cannot be inspected.
    """
    if not sys.platform.startswith("linux"):
        return False
    path = f"/dev/video{index}"
    if not os.path.exists(path):
        raise CameraAccessError(CameraErrorKind.NO_DEVICE, f"{path} does not exist")
    if not os.access(path, os.R_OK | os.W_OK):
        raise CameraAccessError(CameraErrorKind.PERMISSION_DENIED, f"no read/write access to {path}")
    return True


class CameraSession:
    """An open capture device. release() is idempotent and thread-safe."""

    def __init__(self, capture: Any, device_index: int, width: int, height: int):
        self._capture = capture
        self._lock = threading.Lock()
        self._released = False
        self.device_index = device_index
        self.width = width
        self.height = height
        self.started_at = time.time()

    @property
    def active(self) -> bool:
        return not self._released

    def read_frame(self) -> np.ndarray:
        with self._lock:
            if self._released:
                raise CameraAccessError(CameraErrorKind.OTHER, "camera session already released")
            ok, frame = self._capture.read()
        if not ok or frame is None:
            raise CameraAccessError(CameraErrorKind.OTHER, "failed to read frame from camera")
        return frame

    def release(self) -> None:
        with self._lock:
            if self._released:
                return
            self._released = True
            self._capture.release()
        logger.info(
            "[CAMERA] Device %s released after %.1fs",
            self.device_index,
            time.time() - self.started_at,
        )


def open_camera(
    index: int = CAMERA_INDEX,
    width: int = CAMERA_WIDTH,
    height: int = CAMERA_HEIGHT,
    capture_factory: Optional[CaptureFactory] = None,
    device_check: Optional[DeviceCheck] = check_device,
) -> CameraSession:
    """Blocking open of the capture device; run it through asyncio.to_thread."""
    factory = capture_factory or _default_capture_factory

    verified = device_check(index) if device_check is not None else False

    try:
        capture = factory(index)
    except CameraAccessError:
        raise
    except Exception as e:
        raise CameraAccessError(classify_camera_failure(e), str(e)) from e

    if capture is None or not capture.isOpened():
        if capture is not None:
            capture.release()
        # a verified, accessible node that refuses to open is held by another process
        kind = CameraErrorKind.DEVICE_BUSY if verified else CameraErrorKind.OTHER
        raise CameraAccessError(kind, f"could not open camera device {index}")

    # resolution is only a hint; the driver picks the closest mode it supports
    capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
    capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

    ok, frame = capture.read()
    if not ok or frame is None:
        capture.release()
        raise CameraAccessError(CameraErrorKind.OTHER, f"camera device {index} delivered no frames")

    actual_h, actual_w = frame.shape[:2]
    logger.info(
        "[CAMERA] Device %s opened: requested=%sx%s, delivered=%sx%s",
        index,
        width,
        height,
        actual_w,
        actual_h,
    )
    return CameraSession(capture, index, actual_w, actual_h)


async def acquire_camera(
    state: AppState,
    index: int = CAMERA_INDEX,
    width: int = CAMERA_WIDTH,
    height: int = CAMERA_HEIGHT,
    capture_factory: Optional[CaptureFactory] = None,
    device_check: Optional[DeviceCheck] = check_device,
) -> CameraSession:
    async with state.operation("camera start"):
        if state.camera is not None and state.camera.active:
            raise SessionAlreadyActiveError()

        logger.info("[CAMERA] Requesting device %s at %sx%s", index, width, height)
        try:
            session = await asyncio.to_thread(
                open_camera, index, width, height, capture_factory, device_check
            )
        except CameraAccessError as e:
            logger.error("[CAMERA] Access failed (%s): %s", e.kind.value, e.detail)
            raise

        state.camera = session
        return session


def release(state: AppState) -> None:
    """Stop the active session, if any. Safe to call repeatedly."""
    session = state.camera
    state.camera = None
    if session is not None:
        session.release()


async def snapshot(state: AppState) -> ImageBuffer:
    """
    Grab the current frame at native resolution as the current image.

    The session is released before returning, whether or not the grab worked.
    """
    async with state.operation("snapshot"):
        session = state.camera
        if session is None or not session.active:
            raise PreconditionError("Please start the camera first.")
        try:
            frame = await asyncio.to_thread(session.read_frame)
            buffer = ImageBuffer(image=frame_to_image(frame), source="camera")
            await state.publish(buffer)
        finally:
            release(state)
        logger.info("[CAMERA] Snapshot captured: %sx%s", buffer.width, buffer.height)
        return buffer


async def mjpeg_frames(session: CameraSession, fps: float = STREAM_FPS) -> AsyncIterator[bytes]:
    """Yield multipart MJPEG chunks until the session is released."""
    interval = 1.0 / fps if fps > 0 else 0.0
    while session.active:
        try:
            frame = await asyncio.to_thread(session.read_frame)
        except CameraAccessError as e:
            if session.active:
                logger.warning("[CAMERA] Live view stopped: %s", e)
            break
        jpeg = encode_frame_jpeg(frame)
        yield (
            f"--{MJPEG_BOUNDARY}\r\n"
            "Content-Type: image/jpeg\r\n"
            f"Content-Length: {len(jpeg)}\r\n\r\n"
        ).encode("ascii") + jpeg + b"\r\n"
        if interval:
            await asyncio.sleep(interval)
