import math
from dataclasses import dataclass
from typing import Iterable, List

# float32 softmax outputs can land a hair outside [0, 1]
PROBABILITY_TOLERANCE = 1e-6


@dataclass(frozen=True)
class Prediction:
    label: str
    probability: float

    def __post_init__(self):
        if not isinstance(self.label, str):
            raise ValueError(f"Prediction label must be a string, got {type(self.label).__name__}")
        p = float(self.probability)
        if math.isnan(p) or p < -PROBABILITY_TOLERANCE or p > 1.0 + PROBABILITY_TOLERANCE:
            raise ValueError(f"Probability for {self.label!r} out of range: {self.probability}")
        object.__setattr__(self, "probability", min(1.0, max(0.0, p)))


def sort_predictions(predictions: Iterable[Prediction]) -> List[Prediction]:
    """Highest probability first; equal probabilities keep their incoming order."""
    return sorted(predictions, key=lambda p: p.probability, reverse=True)
