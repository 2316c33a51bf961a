"""Tests for the inference pool."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from facepulse.config import Settings
from facepulse.ml.inference import InferencePool


class TestInferencePool:
    async def test_runs_function_with_args(self) -> None:
        pool = InferencePool(1)
        try:
            assert await pool.run(lambda a, b: a + b, 2, 3) == 5
            assert pool.active_count == 0
            assert pool.queue_depth == 0
        finally:
            pool.shutdown()

    async def test_exceptions_propagate(self) -> None:
        def fail() -> None:
            raise ValueError("bad frame")

        pool = InferencePool(1)
        try:
            with pytest.raises(ValueError, match="bad frame"):
                await pool.run(fail)
        finally:
            pool.shutdown()

    async def test_single_worker_serializes_calls(self) -> None:
        lock = threading.Lock()
        overlaps: list[bool] = []

        def work() -> None:
            acquired = lock.acquire(blocking=False)
            overlaps.append(not acquired)
            time.sleep(0.01)
            if acquired:
                lock.release()

        pool = InferencePool(1)
        try:
            await asyncio.gather(*(pool.run(work) for _ in range(5)))
        finally:
            pool.shutdown()
        assert overlaps == [False] * 5

    async def test_call_timeout(self) -> None:
        release = threading.Event()
        pool = InferencePool(1, call_timeout=0.05)
        try:
            with pytest.raises(TimeoutError):
                await pool.run(release.wait, 5)
        finally:
            release.set()
            pool.shutdown()

    async def test_timed_out_call_holds_slot_until_worker_returns(self) -> None:
        pool = InferencePool(1, call_timeout=0.1)
        try:
            with pytest.raises(TimeoutError):
                await pool.run(time.sleep, 0.4)
            assert pool.active_count == 1

            started = time.perf_counter()
            assert await pool.run(lambda: "ok") == "ok"
            assert time.perf_counter() - started < 1.0
            assert pool.active_count == 0
        finally:
            pool.shutdown()

    async def test_abandoned_call_failure_releases_slot(self) -> None:
        release = threading.Event()

        def fail_later() -> None:
            release.wait(5)
            raise RuntimeError("late failure")

        pool = InferencePool(1, call_timeout=0.05)
        try:
            with pytest.raises(TimeoutError):
                await pool.run(fail_later)
            release.set()
            assert await pool.run(lambda a: a * 2, 21) == 42
            assert pool.active_count == 0
        finally:
            release.set()
            pool.shutdown()

    async def test_queue_timeout(self) -> None:
        release = threading.Event()
        pool = InferencePool(1, queue_timeout=0.05)
        try:
            running = asyncio.create_task(pool.run(release.wait, 5))
            await asyncio.sleep(0.01)
            with pytest.raises(TimeoutError):
                await pool.run(lambda: None)
            release.set()
            assert await running is True
        finally:
            release.set()
            pool.shutdown()

    def test_from_settings(self) -> None:
        settings = Settings(max_concurrent=3, queue_timeout=1.5, inference_timeout=None)
        pool = InferencePool.from_settings(settings)
        try:
            assert pool._queue_timeout == 1.5
            assert pool._call_timeout is None
            assert pool._executor._max_workers == 3
        finally:
            pool.shutdown()
