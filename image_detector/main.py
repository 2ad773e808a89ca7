"""Main FastAPI application."""

import asyncio
import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, Response, StreamingResponse
from pydantic import BaseModel

from image_detector import camera
from image_detector.classifier import ModelHandle
from image_detector.config import (
    ALLOW_ALL_ORIGINS,
    AUTO_LOAD_MODEL,
    CORS_ORIGINS,
    MAX_UPLOAD_BYTES,
    MODEL_URL,
)
from image_detector.detection import detect
from image_detector.errors import DetectorError, ModelLoadError, PreconditionError
from image_detector.image_io import encode_jpeg, frame_to_image, resize_to_fit
from image_detector.model_loader import check_model_url, load_model, load_model_into
from image_detector.render import render_html, render_rows, render_text
from image_detector.state import AppState
from image_detector.upload import handle_upload, validate_upload

logging.basicConfig(
    level=logging.INFO,
    stream=sys.stdout,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


class LoadModelRequest(BaseModel):
    model_url: Optional[str] = None


def create_app(
    state: Optional[AppState] = None,
    model_loader: Callable[[str], ModelHandle] = load_model,
    capture_factory: Optional[camera.CaptureFactory] = None,
    device_check: Optional[camera.DeviceCheck] = camera.check_device,
    auto_load_model: bool = AUTO_LOAD_MODEL,
    model_url: str = MODEL_URL,
    max_upload_bytes: int = MAX_UPLOAD_BYTES,
) -> FastAPI:
    state = state or AppState()

    if auto_load_model:
        # a startup load against an unusable location can never succeed
        check_model_url(model_url)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if auto_load_model:
            try:
                await load_model_into(state, model_url, model_loader)
            except ModelLoadError as e:
                # the service stays up; POST /model/load can retry
                logger.error("Startup model load failed: %s", e.message)
        yield
        camera.release(state)

    app = FastAPI(lifespan=lifespan)
    app.state.detector = state

    # -----------------------------------
    # CORS
    # -----------------------------------
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=not ALLOW_ALL_ORIGINS,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(DetectorError)
    async def detector_error_handler(request: Request, exc: DetectorError):
        content = {"error": exc.code, "details": exc.message}
        kind = getattr(exc, "kind", None)
        if kind is not None:
            content["kind"] = kind.value
        logger.info("%s %s -> %s (%s)", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=content)

    # -----------------------------------
    # Service endpoints
    # -----------------------------------

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.get("/state")
    def get_state():
        return state.snapshot()

    # -----------------------------------
    # Model
    # -----------------------------------

    @app.post("/model/load")
    async def model_load(payload: Optional[LoadModelRequest] = None):
        base_url = (payload.model_url if payload and payload.model_url else model_url)
        handle = await load_model_into(state, base_url, model_loader)
        return {
            "model_loaded": True,
            "model_url": handle.base_url,
            "labels": list(handle.labels),
            "image_size": handle.image_size,
        }

    # -----------------------------------
    # Upload
    # -----------------------------------

    @app.post("/upload")
    async def upload(image: UploadFile = File(None)):
        if not image:
            raise HTTPException(422, "Image field is required")
        if image.size is not None:
            # reject on the declared size before the body is pulled into memory
            validate_upload(image.content_type, image.size, max_upload_bytes)
        data = await image.read()
        buffer = await handle_upload(
            state, image.filename, image.content_type, data, max_bytes=max_upload_bytes
        )
        return {
            "source": buffer.source,
            "width": buffer.width,
            "height": buffer.height,
            "display_size": list(state.surface.size),
        }

    @app.get("/preview")
    async def preview():
        session = state.camera
        if session is not None and session.active:
            frame = await asyncio.to_thread(session.read_frame)
            live = resize_to_fit(frame_to_image(frame), state.surface.max_width, state.surface.max_height)
            return Response(content=encode_jpeg(live), media_type="image/jpeg")

        jpeg = state.surface.to_jpeg()
        if jpeg is None:
            raise PreconditionError("Nothing to preview yet.")
        return Response(content=jpeg, media_type="image/jpeg")

    # -----------------------------------
    # Camera
    # -----------------------------------

    @app.post("/camera/start")
    async def camera_start():
        session = await camera.acquire_camera(
            state,
            capture_factory=capture_factory,
            device_check=device_check,
        )
        return {
            "camera_active": True,
            "device_index": session.device_index,
            "width": session.width,
            "height": session.height,
            "stream_url": "/camera/stream",
        }

    @app.post("/camera/snapshot")
    async def camera_snapshot():
        buffer = await camera.snapshot(state)
        return {
            "source": buffer.source,
            "width": buffer.width,
            "height": buffer.height,
            "display_size": list(state.surface.size),
            "camera_active": False,
        }

    @app.post("/camera/stop")
    async def camera_stop():
        camera.release(state)
        return {"camera_active": False}

    @app.get("/camera/stream")
    def camera_stream():
        session = state.camera
        if session is None or not session.active:
            raise PreconditionError("Please start the camera first.")
        return StreamingResponse(
            camera.mjpeg_frames(session),
            media_type=f"multipart/x-mixed-replace; boundary={camera.MJPEG_BOUNDARY}",
        )

    # -----------------------------------
    # Detection
    # -----------------------------------

    @app.post("/detect")
    async def run_detect(format: str = Query("json", pattern="^(json|text|html)$")):
        start = time.time()
        predictions = await detect(state)
        if format == "text":
            return PlainTextResponse(render_text(predictions))
        if format == "html":
            return HTMLResponse(render_html(predictions))

        rows = render_rows(predictions)
        return {
            "top_prediction": rows[0] if rows else None,
            "predictions": rows,
            "processing_time_ms": round((time.time() - start) * 1000, 2),
        }

    return app


app = create_app()
