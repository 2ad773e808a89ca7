"""Detection flow: one predict call → sorted predictions."""

import asyncio
import logging
import time
from typing import List, Optional

from image_detector.classifier import ImageSource, ModelHandle
from image_detector.config import PREDICT_TIMEOUT_S
from image_detector.errors import PreconditionError, PredictionError
from image_detector.prediction import Prediction, sort_predictions
from image_detector.state import AppState, ImageBuffer

logger = logging.getLogger(__name__)

MODEL_MISSING_MESSAGE = "Please load the model first."
IMAGE_MISSING_MESSAGE = "Please upload an image or capture a photo first."


async def _predict(model: ModelHandle, image: ImageSource, timeout: float) -> List[Prediction]:
    call = asyncio.to_thread(model.predict, image)
    if timeout > 0:
        try:
            return await asyncio.wait_for(call, timeout)
        except asyncio.TimeoutError as e:
            raise PredictionError(f"Prediction timed out after {timeout}s") from e
    return await call


async def detect_image(
    model: Optional[ModelHandle],
    image: Optional[ImageBuffer],
    timeout: float = PREDICT_TIMEOUT_S,
) -> List[Prediction]:
    """
    Classify ``image`` with ``model``.

    Returns every class sorted by probability, highest first. Missing inputs
    raise PreconditionError before the model is touched.
    """
    if model is None:
        raise PreconditionError(MODEL_MISSING_MESSAGE)
    if image is None:
        raise PreconditionError(IMAGE_MISSING_MESSAGE)

    start = time.time()
    logger.info(
        "[DETECT] Predicting on %s image %sx%s",
        image.source,
        image.width,
        image.height,
    )
    try:
        raw = await _predict(model, image.image, timeout)
    except PredictionError:
        raise
    except Exception as e:
        logger.exception("[DETECT] Prediction failed")
        raise PredictionError(f"Prediction failed: {e}") from e

    predictions = sort_predictions(raw)
    if predictions:
        top = predictions[0]
        logger.info(
            "[DETECT] Done in %sms, top=%s (%.4f)",
            round((time.time() - start) * 1000, 2),
            top.label,
            top.probability,
        )
    return predictions


async def detect(state: AppState, timeout: float = PREDICT_TIMEOUT_S) -> List[Prediction]:
    async with state.operation("detection"):
        return await detect_image(state.model, state.current_image, timeout)
