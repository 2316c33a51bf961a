"""Tests for detection decoding and the face analysis pipeline."""

from __future__ import annotations

from unittest.mock import MagicMock

import numpy as np
import pytest
from conftest import FakeDetector, make_capabilities, make_detection

from facepulse.ml.capabilities import HeavyDetectorConfig, TinyDetectorConfig
from facepulse.ml.expressions import EXPRESSION_LABELS, OnnxExpressionModel
from facepulse.ml.face_detector import (
    FaceBox,
    OnnxHeavyFaceDetector,
    OnnxTinyFaceDetector,
    non_max_suppression,
)
from facepulse.ml.landmarks import LANDMARK_GROUPS, NUM_POINTS, OnnxLandmarkModel
from facepulse.ml.pipeline import CapabilityUnavailableError, FaceAnalyzer


def _session(outputs: list[np.ndarray], shape: list[object] | None = None) -> MagicMock:
    session = MagicMock()
    node = MagicMock()
    node.name = "input"
    node.shape = shape if shape is not None else [1, 3, "h", "w"]
    session.get_inputs.return_value = [node]
    session.run.return_value = outputs
    return session


def _detector_outputs() -> list[np.ndarray]:
    scores = np.array([[[0.1, 0.9], [0.2, 0.8], [0.3, 0.7], [0.8, 0.2]]], dtype=np.float32)
    boxes = np.array(
        [
            [
                [0.1, 0.1, 0.3, 0.5],
                [0.11, 0.1, 0.31, 0.5],
                [0.6, 0.2, 0.8, 0.6],
                [0.4, 0.4, 0.5, 0.5],
            ]
        ],
        dtype=np.float32,
    )
    return [scores, boxes]


@pytest.fixture()
def image() -> np.ndarray:
    """A 200x100 (width x height) RGB image."""
    return np.zeros((100, 200, 3), dtype=np.uint8)


class TestNonMaxSuppression:
    def test_overlapping_boxes_suppressed(self) -> None:
        boxes = np.array([[0, 0, 10, 10], [1, 1, 11, 11], [20, 20, 30, 30]], dtype=np.float32)
        scores = np.array([0.8, 0.9, 0.5], dtype=np.float32)
        assert non_max_suppression(boxes, scores, 0.3) == [1, 2]

    def test_disjoint_boxes_kept_best_first(self) -> None:
        boxes = np.array([[0, 0, 1, 1], [5, 5, 6, 6]], dtype=np.float32)
        scores = np.array([0.4, 0.6], dtype=np.float32)
        assert non_max_suppression(boxes, scores, 0.3) == [1, 0]


class TestTinyDetector:
    def test_decodes_boxes_to_pixels(self, image: np.ndarray) -> None:
        session = _session(_detector_outputs())
        detector = OnnxTinyFaceDetector(session, "tiny_face_detector")

        faces = detector.detect(image, TinyDetectorConfig(input_size=224, score_threshold=0.5))

        assert len(faces) == 2
        first, second = faces
        assert first.score == pytest.approx(0.9)
        assert (first.box.x, first.box.y, first.box.width, first.box.height) == pytest.approx((20, 10, 40, 40))
        assert (second.box.x, second.box.y, second.box.width, second.box.height) == pytest.approx((120, 20, 40, 40))

    def test_input_tensor_uses_configured_size(self, image: np.ndarray) -> None:
        session = _session(_detector_outputs())
        OnnxTinyFaceDetector(session, "tiny_face_detector").detect(image, TinyDetectorConfig(160, 0.5))

        feeds = session.run.call_args.args[1]
        assert feeds["input"].shape == (1, 3, 160, 160)
        assert feeds["input"].dtype == np.float32

    def test_nothing_above_threshold(self, image: np.ndarray) -> None:
        detector = OnnxTinyFaceDetector(_session(_detector_outputs()), "tiny_face_detector")
        assert detector.detect(image, TinyDetectorConfig(224, 0.95)) == []

    def test_boxes_clipped_to_image(self, image: np.ndarray) -> None:
        scores = np.array([[[0.0, 0.99]]], dtype=np.float32)
        boxes = np.array([[[-0.1, -0.2, 0.2, 1.3]]], dtype=np.float32)
        detector = OnnxTinyFaceDetector(_session([scores, boxes]), "tiny_face_detector")

        (face,) = detector.detect(image, TinyDetectorConfig(224, 0.5))

        assert (face.box.x, face.box.y) == (0.0, 0.0)
        assert face.box.width == pytest.approx(40)
        assert face.box.height == pytest.approx(100)


class TestHeavyDetector:
    def test_uses_min_confidence_and_graph_size(self, image: np.ndarray) -> None:
        session = _session(_detector_outputs(), shape=[1, 3, 240, 320])
        detector = OnnxHeavyFaceDetector(session, "ssd_face_detector")

        faces = detector.detect(image, HeavyDetectorConfig(min_confidence=0.75))

        assert [f.score for f in faces] == pytest.approx([0.9])
        assert session.run.call_args.args[1]["input"].shape == (1, 3, 240, 320)


class TestLandmarkModel:
    def test_points_mapped_from_crop_to_image(self) -> None:
        image = np.zeros((200, 200, 3), dtype=np.uint8)
        relative = np.zeros((1, NUM_POINTS * 2), dtype=np.float32)
        relative[0, 0:2] = [0.0, 0.0]
        relative[0, 2:4] = [1.0, 1.0]
        relative[0, 4:] = 0.5
        model = OnnxLandmarkModel(_session([relative]))

        landmarks = model.predict(image, FaceBox(x=50, y=50, width=100, height=100))

        assert landmarks.points.shape == (NUM_POINTS, 2)
        np.testing.assert_allclose(landmarks.points[0], [40, 40])
        np.testing.assert_allclose(landmarks.points[1], [160, 160])
        np.testing.assert_allclose(landmarks.points[2], [100, 100])

    def test_named_groups_cover_all_points(self) -> None:
        covered = sorted(i for group in LANDMARK_GROUPS.values() for i in range(NUM_POINTS)[group])
        assert covered == list(range(NUM_POINTS))


class TestExpressionModel:
    def test_softmax_over_labels(self) -> None:
        logits = np.array([[0.0, 5.0, 0.0, 0.0, 0.0, 0.0, 1.0]], dtype=np.float32)
        model = OnnxExpressionModel(_session([logits]))

        expressions = model.predict(np.zeros((50, 50, 3), dtype=np.uint8), FaceBox(10, 10, 20, 20))

        assert set(expressions.probabilities) == set(EXPRESSION_LABELS)
        assert sum(expressions.probabilities.values()) == pytest.approx(1.0)
        assert expressions.dominant()[0] == "happy"
        assert [label for label, _ in expressions.above(0.01)][:2] == ["happy", "surprised"]


class TestFaceAnalyzer:
    def test_light_detection_skips_optional_models(self, image: np.ndarray) -> None:
        caps = make_capabilities(FakeDetector([make_detection(1, 1, 10, 10)]))
        results = FaceAnalyzer(caps).detect_all(image)

        assert len(results) == 1
        assert results[0].landmarks is None
        assert results[0].expressions is None
        assert caps.landmarks.calls == 0  # type: ignore[union-attr]

    def test_rich_detection_enriches_every_face(self, image: np.ndarray) -> None:
        detector = FakeDetector([make_detection(1, 1, 10, 10), make_detection(50, 20, 30, 30)])
        results = FaceAnalyzer(make_capabilities(detector)).detect_all(
            image, with_landmarks=True, with_expressions=True
        )

        assert len(results) == 2
        assert all(r.landmarks is not None and r.expressions is not None for r in results)

    def test_detector_receives_loader_config(self, image: np.ndarray) -> None:
        detector = FakeDetector([])
        config = HeavyDetectorConfig(min_confidence=0.7)
        FaceAnalyzer(make_capabilities(detector, config=config)).detect_all(image)
        assert detector.calls[0][1] is config

    @pytest.mark.parametrize(
        ("landmarks", "expressions", "kwargs"),
        [
            (False, True, {"with_landmarks": True}),
            (True, False, {"with_expressions": True}),
        ],
    )
    def test_missing_capability_fails_fast(
        self, image: np.ndarray, landmarks: bool, expressions: bool, kwargs: dict[str, bool]
    ) -> None:
        detector = FakeDetector([make_detection(1, 1, 10, 10)])
        analyzer = FaceAnalyzer(make_capabilities(detector, landmarks=landmarks, expressions=expressions))

        with pytest.raises(CapabilityUnavailableError):
            analyzer.detect_all(image, **kwargs)
        assert detector.calls == []

    def test_detect_single_returns_none_without_faces(self, image: np.ndarray) -> None:
        assert FaceAnalyzer(make_capabilities(FakeDetector([]))).detect_single(image, with_landmarks=True) is None

    def test_detect_single_picks_highest_score(self, image: np.ndarray) -> None:
        detector = FakeDetector(
            [make_detection(0, 0, 5, 5, 0.6), make_detection(10, 10, 5, 5, 0.9), make_detection(20, 20, 5, 5, 0.8)]
        )
        caps = make_capabilities(detector)
        result = FaceAnalyzer(caps).detect_single(image, with_landmarks=True)

        assert result is not None
        assert result.detection.score == 0.9
        assert result.landmarks is not None
        assert caps.landmarks.calls == 1  # type: ignore[union-attr]

    def test_detect_single_tie_keeps_detector_order(self, image: np.ndarray) -> None:
        detector = FakeDetector([make_detection(0, 0, 5, 5, 0.9), make_detection(10, 10, 5, 5, 0.9)])
        result = FaceAnalyzer(make_capabilities(detector)).detect_single(image)

        assert result is not None
        assert result.detection.box.x == 0

    def test_detect_single_requires_landmark_capability(self, image: np.ndarray) -> None:
        analyzer = FaceAnalyzer(make_capabilities(FakeDetector([]), landmarks=False))
        with pytest.raises(CapabilityUnavailableError):
            analyzer.detect_single(image, with_landmarks=True)
