import logging
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np
from PIL import Image

from image_detector.prediction import Prediction

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_SIZE = 224

ImageSource = Union[Image.Image, np.ndarray]


def _to_pil(image: ImageSource) -> Image.Image:
    if isinstance(image, Image.Image):
        return image.convert("RGB")
    if isinstance(image, np.ndarray):
        if image.size == 0:
            raise ValueError("Empty frame passed to classifier")
        # live frames are passed in RGB order, same as decoded uploads
        return Image.fromarray(image.astype(np.uint8)).convert("RGB")
    raise TypeError(f"Unsupported image source: {type(image).__name__}")


def prepare_input(image: ImageSource, size: int, channels_first: bool = False) -> np.ndarray:
    """
    Teachable Machine image preprocessing.

    - center crop to a square
    - resize to size x size
    - scale pixels to [-1, 1]
    - add batch dimension (NHWC, or NCHW when channels_first)
    """
    img = _to_pil(image)
    w, h = img.size
    side = min(w, h)
    left = (w - side) // 2
    top = (h - side) // 2
    img = img.crop((left, top, left + side, top + side)).resize((size, size), Image.BILINEAR)

    arr = np.asarray(img, dtype=np.float32) / 127.5 - 1.0
    if channels_first:
        arr = arr.transpose(2, 0, 1)
    return arr[None]


def to_probabilities(outputs: np.ndarray) -> np.ndarray:
    """Flatten model output to one row; softmax it unless it already is a distribution."""
    scores = np.asarray(outputs, dtype=np.float32)
    if scores.ndim == 2 and scores.shape[0] == 1:
        scores = scores[0]
    scores = scores.reshape(-1)

    if scores.size and scores.min() >= 0.0 and abs(float(scores.sum()) - 1.0) < 1e-3:
        return scores

    # Softmax to probabilities
    e_x = np.exp(scores - np.max(scores))
    return e_x / e_x.sum()


class ModelHandle:
    """
    Loaded image classifier. Immutable once built.

    Wraps an ONNX Runtime session plus the class labels and input size from
    the model's metadata.json.
    """

    def __init__(
        self,
        base_url: str,
        session: Any,
        labels: Sequence[str],
        image_size: int = DEFAULT_IMAGE_SIZE,
        metadata: Optional[Dict[str, Any]] = None,
    ):
        self._base_url = base_url
        self._session = session
        self._labels = tuple(labels)
        self._image_size = int(image_size)
        self._metadata = dict(metadata or {})

        inp = session.get_inputs()[0]
        self._input_name = inp.name
        self._output_name = session.get_outputs()[0].name
        shape = list(inp.shape or [])
        # NCHW exports carry the channel axis right after the batch
        self._channels_first = len(shape) == 4 and shape[1] == 3 and shape[3] != 3

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def labels(self) -> tuple:
        return self._labels

    @property
    def image_size(self) -> int:
        return self._image_size

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self._metadata)

    def predict(self, image: ImageSource) -> List[Prediction]:
        """Return one Prediction per known class, in model output order."""
        tensor = prepare_input(image, self._image_size, self._channels_first)
        logger.debug(
            "Running classifier: input_shape=%s, channels_first=%s",
            tensor.shape,
            self._channels_first,
        )
        outputs = self._session.run([self._output_name], {self._input_name: tensor})[0]
        probs = to_probabilities(outputs)

        if len(probs) != len(self._labels):
            raise ValueError(
                f"Model returned {len(probs)} scores for {len(self._labels)} labels"
            )
        return [
            Prediction(label=label, probability=float(p))
            for label, p in zip(self._labels, probs)
        ]
