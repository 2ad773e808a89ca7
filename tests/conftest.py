from io import BytesIO
from types import SimpleNamespace

import numpy as np
import pytest
from PIL import Image

from image_detector.prediction import Prediction
from image_detector.state import AppState, ImageBuffer
from image_detector.surface import DisplaySurface


def make_image_bytes(width: int, height: int, fmt: str = "PNG", color=(200, 30, 30)) -> bytes:
    buf = BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


class FakeModel:
    """Stands in for ModelHandle; records every predict call."""

    def __init__(self, scores=(("A", 0.2), ("B", 0.7), ("C", 0.1)), error=None):
        self.scores = scores
        self.error = error
        self.calls = []
        self.base_url = "https://models.example/test/"
        self.labels = tuple(label for label, _ in scores)
        self.image_size = 224

    def predict(self, image):
        self.calls.append(image)
        if self.error is not None:
            raise self.error
        return [Prediction(label, p) for label, p in self.scores]


class FakeCapture:
    """Minimal cv2.VideoCapture double."""

    def __init__(self, width=640, height=480, opened=True, frames=None):
        self.opened = opened
        self.width = width
        self.height = height
        self.frames = list(frames) if frames is not None else None
        self.released = False
        self.release_calls = 0
        self.read_calls = 0
        self.props = {}

    def isOpened(self):
        return self.opened and not self.released

    def set(self, prop, value):
        self.props[prop] = value
        return True

    def read(self):
        self.read_calls += 1
        if self.released:
            return False, None
        if self.frames is not None:
            if not self.frames:
                return False, None
            return True, self.frames.pop(0)
        frame = np.zeros((self.height, self.width, 3), dtype=np.uint8)
        # mark the frame so captured content can be checked (BGR: pure blue)
        frame[:, :, 0] = 255
        frame[0, 0] = (self.read_calls % 256, 0, 0)
        return True, frame

    def release(self):
        self.release_calls += 1
        self.released = True


class FakeOnnxSession:
    def __init__(self, output, input_shape=(1, 224, 224, 3), output_shape=None):
        self.output = np.asarray(output, dtype=np.float32)
        self.input_shape = list(input_shape)
        self.output_shape = list(output_shape) if output_shape is not None else list(self.output.shape)
        self.feeds = []

    def get_inputs(self):
        return [SimpleNamespace(name="input", shape=self.input_shape)]

    def get_outputs(self):
        return [SimpleNamespace(name="output", shape=self.output_shape)]

    def run(self, names, feeds):
        self.feeds.append(feeds)
        return [self.output]


@pytest.fixture
def state():
    return AppState(surface=DisplaySurface(600, 400))


@pytest.fixture
def image_buffer():
    return ImageBuffer(image=Image.new("RGB", (320, 240), (10, 20, 30)), source="upload")
