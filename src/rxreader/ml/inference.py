"""Inference execution layer.

Architecture:
    RecognitionLoop (async) -> ThreadPoolExecutor(1) -> ONNX inference

The executor has a single worker, so at most one model run executes at a time.
Callers that must not queue (the recognition loop) check ``active_count`` or
hold their own guard before submitting.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferencePool:
    """Runs blocking inference calls off the event loop, one at a time."""

    def __init__(self) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="onnx-inference",
        )
        self._active_count: int = 0
        self._peak_active: int = 0
        self._completed: int = 0
        self._last_duration: float | None = None
        self._counter_lock = threading.Lock()

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a synchronous function in the inference thread and await it."""
        with self._counter_lock:
            self._active_count += 1
            self._peak_active = max(self._peak_active, self._active_count)
        started = time.perf_counter()
        try:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, func, *args)
        finally:
            elapsed = time.perf_counter() - started
            with self._counter_lock:
                self._active_count -= 1
                self._completed += 1
                self._last_duration = elapsed
            logger.debug("Inference call finished in %.1f ms", elapsed * 1000)

    @property
    def active_count(self) -> int:
        """Number of currently running inference calls."""
        with self._counter_lock:
            return self._active_count

    @property
    def peak_active(self) -> int:
        """Highest number of simultaneously running calls seen so far."""
        with self._counter_lock:
            return self._peak_active

    @property
    def completed(self) -> int:
        with self._counter_lock:
            return self._completed

    @property
    def last_duration(self) -> float | None:
        """Wall time of the most recent call in seconds."""
        with self._counter_lock:
            return self._last_duration

    def shutdown(self) -> None:
        """Shut down the thread pool executor."""
        self._executor.shutdown(wait=True)
