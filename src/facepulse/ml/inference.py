"""Inference concurrency layer.

Architecture:
    caller (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> ONNX inference

Callers beyond the semaphore limit queue for ``queue_timeout`` seconds; a
caller stops waiting for a running call after ``call_timeout`` seconds. Both
raise TimeoutError. A timed-out call keeps its slot until its worker thread
returns. The live loop uses a pool of one so only one detection is ever in
flight.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from facepulse.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Manages the semaphore and thread pool for ML inference."""

    def __init__(
        self,
        max_concurrent: int,
        *,
        queue_timeout: float | None = None,
        call_timeout: float | None = None,
        thread_name_prefix: str = "onnx-inference",
    ) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix=thread_name_prefix,
        )
        self._queue_timeout = queue_timeout
        self._call_timeout = call_timeout
        self._active_count: int = 0
        self._queue_depth: int = 0
        self._counter_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> InferencePool:
        return cls(
            settings.max_concurrent,
            queue_timeout=settings.queue_timeout,
            call_timeout=settings.inference_timeout,
        )

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Submit a synchronous function to the inference thread pool.

        Acquires the semaphore (with timeout), runs the function in the
        executor, and releases the slot once the worker thread returns.

        Raises:
            TimeoutError: If the semaphore cannot be acquired or the call does
                not finish within the configured timeouts.
        """
        with self._counter_lock:
            self._queue_depth += 1
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=self._queue_timeout)
        except TimeoutError:
            logger.warning("Inference queue wait exceeded %.1fs", self._queue_timeout)
            raise
        finally:
            with self._counter_lock:
                self._queue_depth -= 1

        with self._counter_lock:
            self._active_count += 1
        try:
            future = asyncio.get_running_loop().run_in_executor(self._executor, func, *args)
        except BaseException:
            self._release_slot()
            raise
        # Released when the worker finishes, even if the caller stopped waiting.
        future.add_done_callback(self._on_call_done)
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self._call_timeout)
        except TimeoutError:
            logger.warning("Inference call exceeded %.1fs; slot held until it finishes", self._call_timeout)
            raise

    def _on_call_done(self, future: asyncio.Future[object]) -> None:
        if not future.cancelled():
            # Mark the result as retrieved so abandoned failures are not reported as unhandled.
            future.exception()
        self._release_slot()

    def _release_slot(self) -> None:
        self._semaphore.release()
        with self._counter_lock:
            self._active_count -= 1

    @property
    def active_count(self) -> int:
        """Number of currently running inference tasks."""
        with self._counter_lock:
            return self._active_count

    @property
    def queue_depth(self) -> int:
        """Number of callers waiting for a semaphore slot."""
        with self._counter_lock:
            return self._queue_depth

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
