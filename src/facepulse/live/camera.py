"""Camera frame source backed by OpenCV.

A background thread keeps reading from the device and only the most recent
frame is retained. Readers always get whatever is current, so a slow consumer
skips frames and a fast one may see the same frame twice.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import cv2

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

FIRST_FRAME_TIMEOUT_SECONDS: float = 5.0


class FrameUnavailableError(RuntimeError):
    """The camera could not be opened or stopped delivering frames."""


class CameraFrameSource:
    """Continuously grabs frames from a camera and exposes the latest one."""

    def __init__(self, index: int, width: int, height: int) -> None:
        self._capture = cv2.VideoCapture(index)
        if not self._capture.isOpened():
            raise FrameUnavailableError(f"Could not open camera index {index}")
        self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)

        self._lock = threading.Lock()
        self._frame: NDArray[np.uint8] | None = None
        self._first_frame = threading.Event()
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._grab_loop, name="camera-grab", daemon=True)
        self._thread.start()

        if not self._first_frame.wait(FIRST_FRAME_TIMEOUT_SECONDS):
            self.close()
            raise FrameUnavailableError(f"Camera {index} produced no frame within {FIRST_FRAME_TIMEOUT_SECONDS}s")
        logger.info("Camera %d streaming at %dx%d", index, *self.size)

    @property
    def size(self) -> tuple[int, int]:
        """Native (width, height) of the stream."""
        frame = self.latest_bgr()
        height, width = frame.shape[:2]
        return width, height

    def latest_bgr(self) -> NDArray[np.uint8]:
        """Return the most recent frame as captured (BGR), for display."""
        with self._lock:
            frame = self._frame
        if frame is None or self._stopped.is_set():
            raise FrameUnavailableError("Camera stream is not delivering frames")
        return frame

    def current(self) -> NDArray[np.uint8]:
        """Return the most recent frame as RGB, for analysis."""
        return cv2.cvtColor(self.latest_bgr(), cv2.COLOR_BGR2RGB)

    def close(self) -> None:
        self._stopped.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=1.0)
        self._capture.release()

    def _grab_loop(self) -> None:
        while not self._stopped.is_set():
            ok, frame = self._capture.read()
            if not ok:
                logger.error("Camera read failed; stopping capture")
                self._stopped.set()
                break
            with self._lock:
                self._frame = frame
            self._first_frame.set()
