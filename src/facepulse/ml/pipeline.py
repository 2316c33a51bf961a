"""Face analysis pipeline: detection, then optional landmarks and expressions."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

    from facepulse.ml.capabilities import Capabilities
    from facepulse.ml.expressions import FaceExpressions
    from facepulse.ml.face_detector import FaceDetection
    from facepulse.ml.landmarks import FaceLandmarks

logger = logging.getLogger(__name__)


class CapabilityUnavailableError(RuntimeError):
    """Landmark or expression analysis was requested but its model is not loaded."""


@dataclass(frozen=True)
class FaceResult:
    """One face from a single frame. Carries no identity across frames."""

    detection: FaceDetection
    landmarks: FaceLandmarks | None = None
    expressions: FaceExpressions | None = None

    def scaled(self, sx: float, sy: float) -> FaceResult:
        return FaceResult(
            detection=self.detection.scaled(sx, sy),
            landmarks=self.landmarks.scaled(sx, sy) if self.landmarks is not None else None,
            expressions=self.expressions,
        )


class FaceAnalyzer:
    """Runs the loaded capabilities on a frame with the loader's detection config."""

    def __init__(self, capabilities: Capabilities) -> None:
        self._capabilities = capabilities

    @property
    def capabilities(self) -> Capabilities:
        return self._capabilities

    def detect_all(
        self,
        image: NDArray[np.uint8],
        *,
        with_landmarks: bool = False,
        with_expressions: bool = False,
    ) -> list[FaceResult]:
        """Detect every face in ``image``, enriching each one as requested.

        Raises:
            CapabilityUnavailableError: If landmarks or expressions are requested
                and the matching model was not loaded. Checked before detection runs.
        """
        caps = self._capabilities
        if with_landmarks and caps.landmarks is None:
            raise CapabilityUnavailableError("Landmark model is not loaded")
        if with_expressions and caps.expressions is None:
            raise CapabilityUnavailableError("Expression model is not loaded")

        detections = caps.detector.detect(image, caps.config)
        results: list[FaceResult] = []
        for detection in detections:
            landmarks = caps.landmarks.predict(image, detection.box) if with_landmarks and caps.landmarks else None
            expressions = (
                caps.expressions.predict(image, detection.box) if with_expressions and caps.expressions else None
            )
            results.append(FaceResult(detection=detection, landmarks=landmarks, expressions=expressions))
        return results

    def detect_single(self, image: NDArray[np.uint8], *, with_landmarks: bool = False) -> FaceResult | None:
        """Return the highest-confidence face, or None when no face is found.

        Ties keep the detector's order. Landmarks are computed for the chosen
        face only.
        """
        caps = self._capabilities
        if with_landmarks and caps.landmarks is None:
            raise CapabilityUnavailableError("Landmark model is not loaded")

        detections = caps.detector.detect(image, caps.config)
        if not detections:
            return None

        best = max(detections, key=lambda d: d.score)
        logger.debug("Selected face with score %.3f out of %d", best.score, len(detections))
        landmarks = caps.landmarks.predict(image, best.box) if with_landmarks and caps.landmarks else None
        return FaceResult(detection=best, landmarks=landmarks)
