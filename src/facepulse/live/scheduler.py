"""Real-time detection scheduling loop.

Every cycle runs a light detection pass (boxes only) and renders it right
away. Every ``rich_every``-th cycle that found at least one face also runs a
rich pass (landmarks and/or expressions, whichever are loaded) and renders
that over the light overlay. The counter starts at 0, so over N cycles that
all find faces the rich pass runs ceil(N / rich_every) times.

The loop keeps a fixed cadence: after each cycle it sleeps for whatever is
left of ``interval``. A cycle that overruns starts its successor immediately.
The next cycle is only started once the previous one has finished, so at most
one detection call is in flight.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

    import numpy as np
    from numpy.typing import NDArray

    from facepulse.ml.inference import InferencePool
    from facepulse.ml.pipeline import FaceAnalyzer, FaceResult

    FrameSource = Callable[[], NDArray[np.uint8]]
    RenderFn = Callable[[Sequence[FaceResult], tuple[int, int]], None]

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class CycleState:
    """Cycle counter and cadence target. Only the scheduler mutates it."""

    interval: float
    counter: int = 0


@dataclass(frozen=True)
class CycleReport:
    """What a single cycle did."""

    cycle: int
    faces: int
    rich: bool
    elapsed: float


class FrameScheduler:
    """Drives detection and rendering at a fixed cadence until stopped or failed."""

    def __init__(
        self,
        analyzer: FaceAnalyzer,
        pool: InferencePool,
        frame_source: FrameSource,
        render: RenderFn,
        *,
        interval: float,
        rich_every: int,
        clock: Callable[[], float] = time.perf_counter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if rich_every < 1:
            raise ValueError("rich_every must be at least 1")
        if interval < 0:
            raise ValueError("interval must not be negative")
        self._analyzer = analyzer
        self._pool = pool
        self._frame_source = frame_source
        self._render = render
        self._rich_every = rich_every
        self._clock = clock
        self._sleep = sleep
        self._cycle = CycleState(interval=interval)
        self._state = SchedulerState.IDLE
        self._stop = asyncio.Event()

        caps = analyzer.capabilities
        self._rich_landmarks = caps.has_landmarks
        self._rich_expressions = caps.has_expressions

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def cycle_count(self) -> int:
        return self._cycle.counter

    def stop(self) -> None:
        """Ask the loop to exit before its next cycle."""
        self._stop.set()

    async def run(self) -> None:
        """Run cycles until stop() is called.

        Raises:
            RuntimeError: If the scheduler has already been started.
            Exception: Whatever a cycle raised; the scheduler is then FAILED
                and does not restart itself.
        """
        if self._state is not SchedulerState.IDLE:
            raise RuntimeError(f"Scheduler cannot start from state {self._state}")
        self._state = SchedulerState.RUNNING
        logger.info(
            "Frame scheduler running (interval=%.3fs, rich_every=%d, landmarks=%s, expressions=%s)",
            self._cycle.interval,
            self._rich_every,
            self._rich_landmarks,
            self._rich_expressions,
        )

        try:
            while not self._stop.is_set():
                report = await self.run_cycle()
                delay = max(0.0, self._cycle.interval - report.elapsed)
                await self._sleep(delay)
        except Exception:
            self._state = SchedulerState.FAILED
            logger.exception("Frame scheduler failed at cycle %d", self._cycle.counter)
            raise

        self._state = SchedulerState.STOPPED
        logger.info("Frame scheduler stopped after %d cycles", self._cycle.counter)

    async def run_cycle(self) -> CycleReport:
        """Run one light pass, an optional rich pass, and advance the counter."""
        started = self._clock()
        cycle = self._cycle.counter

        frame = self._frame_source()
        height, width = frame.shape[:2]
        source_size = (width, height)

        light = await self._pool.run(self._analyzer.detect_all, frame)
        self._render(light, source_size)

        rich = self._is_rich_cycle(cycle, light)
        if rich:
            enriched = await self._pool.run(self._detect_rich, frame)
            self._render(enriched, source_size)

        self._cycle.counter += 1
        elapsed = self._clock() - started
        logger.debug("Cycle %d: %d face(s), rich=%s, %.1fms", cycle, len(light), rich, elapsed * 1000)
        return CycleReport(cycle=cycle, faces=len(light), rich=rich, elapsed=elapsed)

    def _is_rich_cycle(self, cycle: int, light: Sequence[FaceResult]) -> bool:
        if not (self._rich_landmarks or self._rich_expressions):
            return False
        return cycle % self._rich_every == 0 and len(light) > 0

    def _detect_rich(self, frame: NDArray[np.uint8]) -> list[FaceResult]:
        return self._analyzer.detect_all(
            frame,
            with_landmarks=self._rich_landmarks,
            with_expressions=self._rich_expressions,
        )
