"""Shared fakes for FacePulse tests.

The fakes stand in for ONNX-backed models and are fully deterministic.
"""

from __future__ import annotations

import base64
import io
from typing import TYPE_CHECKING

import numpy as np
import pytest
from PIL import Image

from facepulse.ml.capabilities import Capabilities, TinyDetectorConfig
from facepulse.ml.expressions import EXPRESSION_LABELS, FaceExpressions
from facepulse.ml.face_detector import FaceBox, FaceDetection
from facepulse.ml.landmarks import NUM_POINTS, FaceLandmarks

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray

    from facepulse.ml.capabilities import DetectionConfig


class FakeDetector:
    """Returns the detections produced by ``script`` for each call."""

    def __init__(self, script: Callable[[int], list[FaceDetection]] | list[FaceDetection] | None = None) -> None:
        self._script = script if script is not None else []
        self.calls: list[tuple[tuple[int, ...], DetectionConfig]] = []

    @property
    def model_name(self) -> str:
        return "fake_detector"

    def detect(self, image: NDArray[np.uint8], config: DetectionConfig) -> list[FaceDetection]:
        self.calls.append((image.shape, config))
        if callable(self._script):
            return list(self._script(len(self.calls) - 1))
        return list(self._script)


class FakeLandmarkModel:
    """Spreads 68 points over the box: eyes in the upper half, nose in the middle."""

    def __init__(self) -> None:
        self.calls = 0

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceLandmarks:
        self.calls += 1
        points = np.zeros((NUM_POINTS, 2), dtype=np.float32)
        fx = np.linspace(0.1, 0.9, NUM_POINTS, dtype=np.float32)
        points[:, 0] = box.x + fx * box.width
        points[:, 1] = box.y + 0.5 * box.height
        points[36:42] = [box.x + 0.3 * box.width, box.y + 0.35 * box.height]
        points[42:48] = [box.x + 0.7 * box.width, box.y + 0.35 * box.height]
        points[27:36] = [box.x + 0.5 * box.width, box.y + 0.55 * box.height]
        return FaceLandmarks(points=points)


class FakeExpressionModel:
    def __init__(self) -> None:
        self.calls = 0

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceExpressions:
        self.calls += 1
        probs = dict.fromkeys(EXPRESSION_LABELS, 0.0)
        probs["happy"] = 0.9
        probs["neutral"] = 0.1
        return FaceExpressions(probabilities=probs)


def make_detection(x: float, y: float, w: float, h: float, score: float = 0.9) -> FaceDetection:
    return FaceDetection(box=FaceBox(x=x, y=y, width=w, height=h), score=score)


def make_capabilities(
    detector: FakeDetector | None = None,
    *,
    landmarks: bool = True,
    expressions: bool = True,
    config: DetectionConfig | None = None,
) -> Capabilities:
    return Capabilities(
        detector=detector if detector is not None else FakeDetector(),
        config=config if config is not None else TinyDetectorConfig(input_size=224, score_threshold=0.5),
        landmarks=FakeLandmarkModel() if landmarks else None,
        expressions=FakeExpressionModel() if expressions else None,
    )


def encode_png(width: int = 64, height: int = 48, color: str = "white") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def encode_png_b64(width: int = 64, height: int = 48, color: str = "white") -> str:
    return base64.b64encode(encode_png(width, height, color)).decode("ascii")


@pytest.fixture()
def frame() -> NDArray[np.uint8]:
    """A 320x240 RGB frame."""
    return np.zeros((240, 320, 3), dtype=np.uint8)
