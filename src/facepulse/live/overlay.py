"""Overlay rendering for the live view.

Results arrive in the coordinate space of the frame that was analyzed and are
rescaled to the display size before drawing. Every render starts from a blank
canvas, so an overlay never carries anything over from the previous one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

    from facepulse.ml.pipeline import FaceResult

BOX_COLOR = (255, 178, 50)
LANDMARK_COLOR = (60, 220, 60)
TEXT_COLOR = (255, 255, 255)
FONT = cv2.FONT_HERSHEY_SIMPLEX


def resize_results(
    results: Sequence[FaceResult],
    source_size: tuple[int, int],
    display_size: tuple[int, int],
) -> list[FaceResult]:
    """Rescale results from ``source_size`` to ``display_size`` (both width, height)."""
    sx = display_size[0] / source_size[0]
    sy = display_size[1] / source_size[1]
    return [result.scaled(sx, sy) for result in results]


def _draw_face(canvas: NDArray[np.uint8], face: FaceResult, min_expression_probability: float) -> None:
    box = face.detection.box
    top_left = (round(box.x), round(box.y))
    bottom_right = (round(box.x + box.width), round(box.y + box.height))
    cv2.rectangle(canvas, top_left, bottom_right, BOX_COLOR, 2)
    cv2.putText(
        canvas,
        f"{face.detection.score:.2f}",
        (top_left[0], max(top_left[1] - 6, 12)),
        FONT,
        0.45,
        BOX_COLOR,
        1,
        cv2.LINE_AA,
    )

    if face.landmarks is not None:
        for x, y in face.landmarks.points:
            cv2.circle(canvas, (round(float(x)), round(float(y))), 1, LANDMARK_COLOR, -1)

    if face.expressions is not None:
        line_y = bottom_right[1] + 16
        for label, probability in face.expressions.above(min_expression_probability):
            cv2.putText(
                canvas,
                f"{label} ({probability:.2f})",
                (top_left[0], line_y),
                FONT,
                0.45,
                TEXT_COLOR,
                1,
                cv2.LINE_AA,
            )
            line_y += 16


def render_overlay(
    results: Sequence[FaceResult],
    source_size: tuple[int, int],
    display_size: tuple[int, int],
    min_expression_probability: float = 0.05,
) -> NDArray[np.uint8]:
    """Draw ``results`` onto a new blank BGR canvas of ``display_size``.

    Faces without landmarks or expressions get only the parts they carry.
    An empty ``results`` yields a blank canvas.
    """
    width, height = display_size
    canvas = np.zeros((height, width, 3), dtype=np.uint8)
    for face in resize_results(results, source_size, display_size):
        _draw_face(canvas, face, min_expression_probability)
    return canvas


class Overlay:
    """Holds the most recent overlay canvas for the display surface."""

    def __init__(self, display_size: tuple[int, int], min_expression_probability: float = 0.05) -> None:
        self._display_size = display_size
        self._min_expression_probability = min_expression_probability
        width, height = display_size
        self._canvas: NDArray[np.uint8] = np.zeros((height, width, 3), dtype=np.uint8)

    @property
    def display_size(self) -> tuple[int, int]:
        return self._display_size

    @property
    def image(self) -> NDArray[np.uint8]:
        return self._canvas

    def update(self, results: Sequence[FaceResult], source_size: tuple[int, int]) -> None:
        """Replace the whole overlay with a rendering of ``results``."""
        self._canvas = render_overlay(results, source_size, self._display_size, self._min_expression_probability)

    def composite(self, frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
        """Return a copy of ``frame`` (BGR, display size) with the overlay drawn on top."""
        out = frame.copy()
        mask = self._canvas.any(axis=2)
        out[mask] = self._canvas[mask]
        return out
