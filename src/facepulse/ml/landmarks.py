"""68-point facial landmark model.

Point layout follows the iBUG 300-W convention. "Left" and "right" are in
image space, as seen by the camera.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import numpy as np

from facepulse.ml.preprocessing import crop, square_crop_region, to_input_tensor

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from facepulse.ml.face_detector import FaceBox

LANDMARK_INPUT_SIZE: int = 112
NUM_POINTS: int = 68

LANDMARK_GROUPS: dict[str, slice] = {
    "jaw": slice(0, 17),
    "left_eye_brow": slice(17, 22),
    "right_eye_brow": slice(22, 27),
    "nose": slice(27, 36),
    "left_eye": slice(36, 42),
    "right_eye": slice(42, 48),
    "mouth": slice(48, 68),
}


@dataclass(frozen=True)
class FaceLandmarks:
    """68 (x, y) points in source-frame pixels."""

    points: NDArray[np.float32]

    def group(self, name: str) -> NDArray[np.float32]:
        return self.points[LANDMARK_GROUPS[name]]

    @property
    def left_eye(self) -> NDArray[np.float32]:
        return self.group("left_eye")

    @property
    def right_eye(self) -> NDArray[np.float32]:
        return self.group("right_eye")

    @property
    def nose(self) -> NDArray[np.float32]:
        return self.group("nose")

    @property
    def mouth(self) -> NDArray[np.float32]:
        return self.group("mouth")

    @property
    def jaw(self) -> NDArray[np.float32]:
        return self.group("jaw")

    def scaled(self, sx: float, sy: float) -> FaceLandmarks:
        return FaceLandmarks(points=self.points * np.array([sx, sy], dtype=np.float32))


class LandmarkModel(Protocol):
    """Protocol for landmark models."""

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceLandmarks:
        """Locate the 68 landmarks of the face inside ``box``."""
        ...


class OnnxLandmarkModel:
    """Runs a landmark regressor on a square crop around the face.

    The graph outputs 136 values, (x, y) pairs relative to the crop in [0, 1].
    """

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name: str = session.get_inputs()[0].name

    def predict(self, image: NDArray[np.uint8], box: FaceBox) -> FaceLandmarks:
        height, width = image.shape[:2]
        x0, y0, x1, y1 = region = square_crop_region(box, (width, height))
        face = crop(image, region)
        tensor = to_input_tensor(face, (LANDMARK_INPUT_SIZE, LANDMARK_INPUT_SIZE), mean=0.0, scale=1.0 / 255.0)

        output = np.asarray(self._session.run(None, {self._input_name: tensor})[0], dtype=np.float32)
        relative = output.reshape(NUM_POINTS, 2)
        points = relative * np.array([x1 - x0, y1 - y0], dtype=np.float32) + np.array([x0, y0], dtype=np.float32)
        return FaceLandmarks(points=points)
