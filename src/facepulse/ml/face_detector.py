"""Face detection models.

Both detectors are ONNX graphs that take a 1x3xHxW float tensor and return
per-anchor class scores ``(1, N, 2)`` and boxes ``(1, N, 4)`` as
``(x1, y1, x2, y2)`` fractions of the input. The tiny detector accepts any
square input size; the heavy detector runs at the size baked into its graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facepulse.ml.preprocessing import to_input_tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from facepulse.ml.capabilities import DetectionConfig, HeavyDetectorConfig, TinyDetectorConfig

logger = logging.getLogger(__name__)

NMS_IOU_THRESHOLD: float = 0.3
HEAVY_DEFAULT_INPUT_SIZE: tuple[int, int] = (640, 480)


@dataclass(frozen=True)
class FaceBox:
    """Axis-aligned box in pixel coordinates."""

    x: float
    y: float
    width: float
    height: float

    @property
    def area(self) -> float:
        return self.width * self.height

    def scaled(self, sx: float, sy: float) -> FaceBox:
        return FaceBox(x=self.x * sx, y=self.y * sy, width=self.width * sx, height=self.height * sy)

    def clipped(self, width: int, height: int) -> FaceBox:
        """Return the part of the box that lies inside a ``width`` x ``height`` image."""
        x0 = min(max(self.x, 0.0), float(width))
        y0 = min(max(self.y, 0.0), float(height))
        x1 = min(max(self.x + self.width, 0.0), float(width))
        y1 = min(max(self.y + self.height, 0.0), float(height))
        return FaceBox(x=x0, y=y0, width=x1 - x0, height=y1 - y0)


@dataclass(frozen=True)
class FaceDetection:
    """A detected face: box in source-frame pixels plus confidence."""

    box: FaceBox
    score: float

    def scaled(self, sx: float, sy: float) -> FaceDetection:
        return FaceDetection(box=self.box.scaled(sx, sy), score=self.score)


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8], config: DetectionConfig) -> list[FaceDetection]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array.
            config: Detection parameters for the active detector variant.

        Returns:
            Detections in pixel space of ``image``, highest score first.
        """
        ...


def non_max_suppression(boxes: NDArray[np.float32], scores: NDArray[np.float32], iou_threshold: float) -> list[int]:
    """Greedy NMS over ``(x1, y1, x2, y2)`` boxes. Returns kept indices, best first."""
    order = np.argsort(-scores, kind="stable")
    areas = np.clip(boxes[:, 2] - boxes[:, 0], 0, None) * np.clip(boxes[:, 3] - boxes[:, 1], 0, None)
    keep: list[int] = []
    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        xx1 = np.maximum(boxes[best, 0], boxes[rest, 0])
        yy1 = np.maximum(boxes[best, 1], boxes[rest, 1])
        xx2 = np.minimum(boxes[best, 2], boxes[rest, 2])
        yy2 = np.minimum(boxes[best, 3], boxes[rest, 3])
        inter = np.clip(xx2 - xx1, 0, None) * np.clip(yy2 - yy1, 0, None)
        union = areas[best] + areas[rest] - inter
        iou = np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)
        order = rest[iou <= iou_threshold]
    return keep


class _OnnxBoxDetector:
    """Shared decoding for score/box detector graphs."""

    def __init__(self, session: InferenceSession, model_name: str) -> None:
        self._session = session
        self._model_name = model_name
        self._input_name: str = session.get_inputs()[0].name

    @property
    def model_name(self) -> str:
        return self._model_name

    def _run(self, image: NDArray[np.uint8], input_size: tuple[int, int], threshold: float) -> list[FaceDetection]:
        height, width = image.shape[:2]
        tensor = to_input_tensor(image, input_size)
        scores, boxes = self._session.run(None, {self._input_name: tensor})[:2]

        face_scores = np.asarray(scores, dtype=np.float32)[0, :, 1]
        rel_boxes = np.asarray(boxes, dtype=np.float32)[0]
        mask = face_scores >= threshold
        if not np.any(mask):
            return []

        face_scores = face_scores[mask]
        pixel_boxes = rel_boxes[mask] * np.array([width, height, width, height], dtype=np.float32)

        detections: list[FaceDetection] = []
        for idx in non_max_suppression(pixel_boxes, face_scores, NMS_IOU_THRESHOLD):
            x1, y1, x2, y2 = (float(v) for v in pixel_boxes[idx])
            box = FaceBox(x=x1, y=y1, width=x2 - x1, height=y2 - y1).clipped(width, height)
            if box.area <= 0:
                continue
            detections.append(FaceDetection(box=box, score=float(face_scores[idx])))
        logger.debug("%s: %d face(s) above %.2f", self._model_name, len(detections), threshold)
        return detections


class OnnxTinyFaceDetector(_OnnxBoxDetector):
    """Lightweight detector run at a square, configurable input size."""

    def detect(self, image: NDArray[np.uint8], config: TinyDetectorConfig) -> list[FaceDetection]:
        size = (config.input_size, config.input_size)
        return self._run(image, size, config.score_threshold)


class OnnxHeavyFaceDetector(_OnnxBoxDetector):
    """Heavier detector run at the input size declared by its graph."""

    def __init__(self, session: InferenceSession, model_name: str) -> None:
        super().__init__(session, model_name)
        shape = session.get_inputs()[0].shape
        # Dynamic axes come through as strings or None
        if len(shape) == 4 and isinstance(shape[2], int) and isinstance(shape[3], int):
            self._input_size = (shape[3], shape[2])
        else:
            self._input_size = HEAVY_DEFAULT_INPUT_SIZE

    def detect(self, image: NDArray[np.uint8], config: HeavyDetectorConfig) -> list[FaceDetection]:
        return self._run(image, self._input_size, config.min_confidence)
