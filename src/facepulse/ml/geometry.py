"""Resolution-independent face geometry."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from facepulse.ml.pipeline import FaceResult


@dataclass(frozen=True)
class NormalizedPoint:
    x: float
    y: float


@dataclass(frozen=True)
class NormalizedBox:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class NormalizedGeometry:
    """Box and eye/nose centroids as fractions of image width and height."""

    box: NormalizedBox
    left_eye: NormalizedPoint
    right_eye: NormalizedPoint
    nose: NormalizedPoint


def _unit(value: float) -> float:
    return float(min(max(value, 0.0), 1.0))


def centroid(points: NDArray[np.float32]) -> tuple[float, float]:
    """Arithmetic mean of an (N, 2) point array."""
    if len(points) == 0:
        raise ValueError("Cannot take the centroid of an empty point group")
    mean = np.mean(np.asarray(points, dtype=np.float64), axis=0)
    return float(mean[0]), float(mean[1])


def normalize_point(point: tuple[float, float], width: int, height: int) -> NormalizedPoint:
    return NormalizedPoint(x=_unit(point[0] / width), y=_unit(point[1] / height))


def normalize_face(result: FaceResult, width: int, height: int) -> NormalizedGeometry:
    """Divide x by ``width`` and y by ``height`` for the box and landmark centroids.

    Raises:
        ValueError: If the result carries no landmarks.
    """
    if result.landmarks is None:
        raise ValueError("Face result has no landmarks to normalize")

    box = result.detection.box
    norm_box = NormalizedBox(
        x=_unit(box.x / width),
        y=_unit(box.y / height),
        width=_unit(box.width / width),
        height=_unit(box.height / height),
    )
    landmarks = result.landmarks
    return NormalizedGeometry(
        box=norm_box,
        left_eye=normalize_point(centroid(landmarks.left_eye), width, height),
        right_eye=normalize_point(centroid(landmarks.right_eye), width, height),
        nose=normalize_point(centroid(landmarks.nose), width, height),
    )
