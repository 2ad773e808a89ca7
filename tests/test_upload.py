import asyncio

import pytest
from PIL import Image

from conftest import make_image_bytes
from image_detector.errors import DecodeError, ValidationError
from image_detector.image_io import fit_scale, fit_size
from image_detector.state import ImageBuffer
from image_detector.upload import handle_upload


def test_upload_scales_1200x800_to_600x400(state):
    buffer = asyncio.run(
        handle_upload(state, "big.png", "image/png", make_image_bytes(1200, 800))
    )

    assert (buffer.width, buffer.height) == (1200, 800)
    assert state.current_image is buffer
    assert state.surface.size == (600, 400)


def test_small_image_is_not_upscaled(state):
    asyncio.run(handle_upload(state, "small.jpg", "image/jpeg", make_image_bytes(120, 90, "JPEG")))

    assert state.surface.size == (120, 90)


@pytest.mark.parametrize(
    "width,height",
    [(1200, 800), (800, 1200), (4000, 300), (601, 401), (1920, 1080), (333, 999)],
)
def test_display_fits_bound_and_keeps_aspect(state, width, height):
    asyncio.run(handle_upload(state, "img.png", "image/png", make_image_bytes(width, height)))

    out_w, out_h = state.surface.size
    scale = fit_scale(width, height, 600, 400)
    assert out_w <= 600 and out_h <= 400
    assert abs(out_w - width * scale) <= 1
    assert abs(out_h - height * scale) <= 1


@pytest.mark.parametrize("content_type", ["text/plain", "application/pdf", "", None, "video/mp4"])
def test_non_image_mime_rejected_without_state_change(state, image_buffer, content_type):
    state.current_image = image_buffer

    with pytest.raises(ValidationError):
        asyncio.run(handle_upload(state, "x", content_type, make_image_bytes(10, 10)))

    assert state.current_image is image_buffer
    assert state.surface.size is None


def test_oversized_file_rejected_without_state_change(state, image_buffer):
    state.current_image = image_buffer
    data = make_image_bytes(10, 10)

    with pytest.raises(ValidationError) as exc:
        asyncio.run(handle_upload(state, "x.png", "image/png", data, max_bytes=len(data) - 1))

    assert "too large" in str(exc.value)
    assert state.current_image is image_buffer


def test_file_at_size_limit_is_accepted(state):
    data = make_image_bytes(10, 10)

    asyncio.run(handle_upload(state, "x.png", "image/png", data, max_bytes=len(data)))

    assert state.current_image is not None


def test_corrupt_bytes_raise_decode_error(state, image_buffer):
    state.current_image = image_buffer

    with pytest.raises(DecodeError):
        asyncio.run(handle_upload(state, "x.png", "image/png", b"\x89PNG not really a png"))

    assert state.current_image is image_buffer
    assert state.busy is None


def test_upload_replaces_previous_image_and_leaves_camera_alone(state):
    sentinel = object()
    state.camera = sentinel
    state.current_image = ImageBuffer(image=Image.new("RGB", (5, 5)), source="camera")

    buffer = asyncio.run(handle_upload(state, "x.png", "image/png", make_image_bytes(50, 40)))

    assert state.current_image is buffer
    assert buffer.source == "upload"
    assert state.camera is sentinel


def test_fit_scale_limited_by_tighter_side():
    assert fit_scale(1200, 800, 600, 400) == 0.5
    assert fit_scale(1000, 1000, 600, 400) == 0.4
    assert fit_scale(100, 100, 600, 400) == 1.0
    assert fit_size(1000, 1000, 600, 400) == (400, 400)


def test_upload_draws_off_the_event_loop(state, monkeypatch):
    real_to_thread = asyncio.to_thread
    offloaded = []

    async def recording_to_thread(func, *args, **kwargs):
        offloaded.append(func)
        return await real_to_thread(func, *args, **kwargs)

    monkeypatch.setattr(asyncio, "to_thread", recording_to_thread)

    asyncio.run(handle_upload(state, "x.png", "image/png", make_image_bytes(1200, 800)))

    assert state.surface.draw in offloaded
    assert state.surface.size == (600, 400)
