"""Facial expression classifier."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facepulse.ml.preprocessing import crop, square_crop_region, to_grayscale, to_input_tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from facepulse.ml.face_detector import FaceBox

EXPRESSION_INPUT_SIZE: int = 112
EXPRESSION_LABELS: tuple[str, ...] = (
    "neutral",
    "happy",
    "sad",
    "angry",
    "fearful",
    "disgusted",
    "surprised",
)


@dataclass(frozen=True)
class FaceExpressions:
    """Probability per expression label, summing to 1."""

    probabilities: dict[str, float]

    def dominant(self) -> tuple[str, float]:
        label = max(self.probabilities, key=self.probabilities.__getitem__)
        return label, self.probabilities[label]

    def above(self, min_probability: float) -> list[tuple[str, float]]:
        """Labels with probability >= ``min_probability``, most likely first."""
        ranked = sorted(self.probabilities.items(), key=lambda item: item[1], reverse=True)
        return [(label, p) for label, p in ranked if p >= min_probability]


class ExpressionModel(Protocol):
    """Protocol for expression classifiers."""

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceExpressions:
        """Classify the expression of the face inside ``box``."""
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return exp / np.sum(exp)


class OnnxExpressionModel:
    """Classifies a grayscale square crop around the face into seven expressions."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name: str = session.get_inputs()[0].name

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceExpressions:
        height, width = image.shape[:2]
        face = to_grayscale(crop(image, square_crop_region(box, (width, height))))
        # Replicate the single channel so the graph sees a 3-channel input
        face_rgb = np.repeat(face[:, :, np.newaxis], 3, axis=2)
        tensor = to_input_tensor(face_rgb, (EXPRESSION_INPUT_SIZE, EXPRESSION_INPUT_SIZE), mean=0.0, scale=1.0 / 255.0)

        logits = np.asarray(self._session.run(None, {self._input_name: tensor})[0], dtype=np.float32).reshape(-1)
        probs = softmax(logits[: len(EXPRESSION_LABELS)])
        return FaceExpressions(probabilities={label: float(p) for label, p in zip(EXPRESSION_LABELS, probs, strict=True)})
