"""Capability loading: pick the base detector and layer optional models on top.

The tiny detector is tried first and the heavy detector is only loaded if the
tiny one cannot be. Landmark and expression models are optional; failing to
load either leaves that capability absent without affecting the detector.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar, TypeVar

from facepulse.ml.expressions import OnnxExpressionModel
from facepulse.ml.face_detector import OnnxHeavyFaceDetector, OnnxTinyFaceDetector
from facepulse.ml.landmarks import OnnxLandmarkModel
from facepulse.ml.model_manager import (
    EXPRESSION_MODEL,
    HEAVY_DETECTOR,
    LANDMARK_MODEL,
    TINY_DETECTOR,
    ModelLoadError,
)

if TYPE_CHECKING:
    from facepulse.config import Settings
    from facepulse.ml.expressions import ExpressionModel
    from facepulse.ml.face_detector import FaceDetector
    from facepulse.ml.landmarks import LandmarkModel
    from facepulse.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CapabilityLoadError(RuntimeError):
    """Neither the tiny nor the heavy detector could be loaded."""


class DetectorVariant(StrEnum):
    FAST_TINY = "fast-tiny"
    ACCURATE_HEAVY = "accurate-heavy"


class DetectionProfile(StrEnum):
    """Which consumer the configuration is tuned for."""

    LIVE = "live"
    SINGLE_SHOT = "single_shot"


@dataclass(frozen=True)
class TinyDetectorConfig:
    input_size: int
    score_threshold: float

    variant: ClassVar[DetectorVariant] = DetectorVariant.FAST_TINY


@dataclass(frozen=True)
class HeavyDetectorConfig:
    min_confidence: float

    variant: ClassVar[DetectorVariant] = DetectorVariant.ACCURATE_HEAVY


DetectionConfig = TinyDetectorConfig | HeavyDetectorConfig


@dataclass(frozen=True)
class Capabilities:
    """Models available to this process. Fixed once loading has finished."""

    detector: FaceDetector
    config: DetectionConfig
    landmarks: LandmarkModel | None = None
    expressions: ExpressionModel | None = None

    @property
    def variant(self) -> DetectorVariant:
        return self.config.variant

    @property
    def has_landmarks(self) -> bool:
        return self.landmarks is not None

    @property
    def has_expressions(self) -> bool:
        return self.expressions is not None

    @property
    def supports_rich(self) -> bool:
        """Whether a landmarks/expressions pass can do anything beyond detection."""
        return self.has_landmarks or self.has_expressions


class CapabilityLoader:
    """Loads detector and optional models through a ModelManager."""

    def __init__(self, manager: ModelManager, settings: Settings) -> None:
        self._manager = manager
        self._settings = settings

    def load(self, profile: DetectionProfile, *, with_expressions: bool = True) -> Capabilities:
        """Load capabilities and select the detection config for ``profile``.

        With ``with_expressions=False`` the expression model is never requested,
        for consumers that only need boxes and landmarks.

        Raises:
            CapabilityLoadError: If no base detector can be loaded.
        """
        detector, config = self._load_detector(profile)
        landmarks = self._load_optional(LANDMARK_MODEL, OnnxLandmarkModel)
        expressions = self._load_optional(EXPRESSION_MODEL, OnnxExpressionModel) if with_expressions else None

        capabilities = Capabilities(
            detector=detector,
            config=config,
            landmarks=landmarks,
            expressions=expressions,
        )
        logger.info(
            "Capabilities ready (detector=%s, config=%s, landmarks=%s, expressions=%s)",
            capabilities.variant,
            config,
            capabilities.has_landmarks,
            capabilities.has_expressions,
        )
        return capabilities

    def _load_detector(self, profile: DetectionProfile) -> tuple[FaceDetector, DetectionConfig]:
        try:
            session = self._manager.get_session(TINY_DETECTOR)
        except ModelLoadError as exc:
            logger.warning("Tiny detector unavailable, falling back to %s: %s", HEAVY_DETECTOR, exc)
        else:
            tiny_config = TinyDetectorConfig(
                input_size=self._tiny_input_size(profile),
                score_threshold=self._settings.score_threshold,
            )
            return OnnxTinyFaceDetector(session, TINY_DETECTOR), tiny_config

        try:
            session = self._manager.get_session(HEAVY_DETECTOR)
        except ModelLoadError as exc:
            raise CapabilityLoadError("No face detector could be loaded") from exc

        heavy_config = HeavyDetectorConfig(min_confidence=self._settings.min_confidence)
        return OnnxHeavyFaceDetector(session, HEAVY_DETECTOR), heavy_config

    def _load_optional(self, model_name: str, factory: type[T]) -> T | None:
        try:
            session = self._manager.get_session(model_name)
        except ModelLoadError as exc:
            logger.warning("Optional model %s unavailable: %s", model_name, exc)
            return None
        return factory(session)

    def _tiny_input_size(self, profile: DetectionProfile) -> int:
        if profile is DetectionProfile.SINGLE_SHOT:
            return self._settings.single_shot_input_size
        return self._settings.live_input_size
