"""Live camera view with a detection overlay.

Press ``q`` in the window to quit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

import cv2

from facepulse.config import configure_logging, get_settings
from facepulse.live.camera import CameraFrameSource
from facepulse.live.overlay import Overlay
from facepulse.live.scheduler import FrameScheduler
from facepulse.ml.capabilities import CapabilityLoader, CapabilityLoadError, DetectionProfile
from facepulse.ml.inference import InferencePool
from facepulse.ml.model_manager import OnnxModelManager
from facepulse.ml.pipeline import FaceAnalyzer

if TYPE_CHECKING:
    from facepulse.config import Settings

logger = logging.getLogger(__name__)

WINDOW_NAME = "FacePulse"
DISPLAY_INTERVAL_SECONDS: float = 1 / 30


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live face detection overlay")
    parser.add_argument("--camera", type=int, default=None, help="camera index (overrides FACEPULSE_CAMERA_INDEX)")
    parser.add_argument("--interval-ms", type=int, default=None, help="target cycle interval in milliseconds")
    parser.add_argument("--rich-every", type=int, default=None, help="run landmarks/expressions every N cycles")
    return parser.parse_args(argv)


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    overrides: dict[str, int] = {}
    if args.camera is not None:
        overrides["camera_index"] = args.camera
    if args.interval_ms is not None:
        overrides["live_interval_ms"] = args.interval_ms
    if args.rich_every is not None:
        overrides["rich_every"] = args.rich_every
    return settings.model_copy(update=overrides)


async def _display(camera: CameraFrameSource, overlay: Overlay, scheduler: FrameScheduler) -> None:
    """Show the latest frame with the latest overlay until 'q' is pressed or the loop ends."""
    while True:
        cv2.imshow(WINDOW_NAME, overlay.composite(camera.latest_bgr()))
        if cv2.waitKey(1) & 0xFF == ord("q"):
            scheduler.stop()
            return
        await asyncio.sleep(DISPLAY_INTERVAL_SECONDS)


async def run_live(settings: Settings) -> None:
    """Open the camera, load capabilities, and run the scheduler with a live display.

    Raises:
        CapabilityLoadError: If no detector can be loaded; the loop is not started.
        Exception: Any error from a cycle, after the scheduler has stopped.
    """
    camera = CameraFrameSource(settings.camera_index, settings.camera_width, settings.camera_height)
    pool = InferencePool(1, thread_name_prefix="live-inference")
    try:
        capabilities = CapabilityLoader(OnnxModelManager(settings), settings).load(DetectionProfile.LIVE)
        overlay = Overlay(camera.size, settings.min_expression_probability)
        scheduler = FrameScheduler(
            FaceAnalyzer(capabilities),
            pool,
            camera.current,
            overlay.update,
            interval=settings.live_interval_ms / 1000,
            rich_every=settings.rich_every,
        )

        loop_task = asyncio.create_task(scheduler.run(), name="frame-scheduler")
        display_task = asyncio.create_task(_display(camera, overlay, scheduler), name="display")
        await asyncio.wait({loop_task, display_task}, return_when=asyncio.FIRST_COMPLETED)
        scheduler.stop()
        display_task.cancel()
        for outcome in await asyncio.gather(loop_task, display_task, return_exceptions=True):
            if isinstance(outcome, Exception):
                raise outcome
    finally:
        pool.shutdown()
        camera.close()
        cv2.destroyAllWindows()


def main(argv: list[str] | None = None) -> int:
    """Console entry point for the live view."""
    args = parse_args(argv)
    settings = _apply_overrides(get_settings(), args)
    configure_logging(settings.log_level)

    try:
        asyncio.run(run_live(settings))
    except CapabilityLoadError:
        logger.exception("Could not load a face detector; live view not started")
        print("Error initializing models. See the log for details.", file=sys.stderr)  # noqa: T201
        return 1
    except Exception as exc:
        logger.error("Live view stopped: %s", exc)
        print(f"Error in live view:\n{exc}", file=sys.stderr)  # noqa: T201
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
