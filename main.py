"""Entry point for `uvicorn main:app`."""

from image_detector.main import app

__all__ = ["app"]
