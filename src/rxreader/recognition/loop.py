"""Timer-driven capture -> preprocess -> infer -> interpret loop.

Architecture:
    timer task --(every poll interval)--> tick task --> InferencePool (1 thread)

Every timer firing spawns a tick. A tick that arrives while the previous one
is still running is skipped outright, so at most one inference is in flight
and a slow model never builds a backlog. The only suspension point inside a
tick is awaiting the inference thread.

Errors never escape a tick:
    FrameNotReadyError -> tick abandoned silently
    DeviceError        -> fault surfaced, loop disarms; the owner tears the stream down
    InferenceError     -> fault surfaced, loop stays armed
    anything else      -> logged with traceback, surfaced, loop stays armed
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import StrEnum
from typing import TYPE_CHECKING

from rxreader.errors import DeviceError, FrameNotReadyError, InferenceError
from rxreader.recognition.state import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    Fault,
    FaultKind,
    LoopPhase,
    RecognitionState,
    interpret,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from rxreader.camera.frame_source import FrameSource
    from rxreader.ml.classifier import ImageClassifier
    from rxreader.ml.inference import InferencePool
    from rxreader.ml.labels import LabelSet
    from rxreader.ml.preprocessing import FramePreprocessor

logger = logging.getLogger(__name__)


class TickOutcome(StrEnum):
    PUBLISHED = "published"
    SKIPPED_IDLE = "skipped_idle"
    SKIPPED_BUSY = "skipped_busy"
    FRAME_NOT_READY = "frame_not_ready"
    FAILED = "failed"


class RecognitionLoop:
    """Owns the polling timer and the latest recognition state."""

    def __init__(
        self,
        frame_source: FrameSource,
        preprocessor: FramePreprocessor,
        classifier: ImageClassifier,
        labels: LabelSet,
        pool: InferencePool,
        *,
        threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        interval: float = 1.0,
    ) -> None:
        if interval <= 0:
            raise ValueError("Poll interval must be positive")
        self._frame_source = frame_source
        self._preprocessor = preprocessor
        self._classifier = classifier
        self._labels = labels
        self._pool = pool
        self._threshold = threshold
        self._interval = interval

        self._state = RecognitionState()
        self._phase = LoopPhase.IDLE
        self._fault: Fault | None = None
        self._busy = False
        self._timer: asyncio.Task[None] | None = None
        self._ticks: set[asyncio.Task[TickOutcome]] = set()
        self._listeners: list[Callable[[RecognitionState], None]] = []
        self._fault_listeners: list[Callable[[Fault], None]] = []
        self._skipped = 0

    # -- Observation --------------------------------------------------------

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def phase(self) -> LoopPhase:
        return self._phase

    @property
    def fault(self) -> Fault | None:
        return self._fault

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def skipped_ticks(self) -> int:
        """Ticks dropped because the previous one was still running."""
        return self._skipped

    def subscribe(self, listener: Callable[[RecognitionState], None]) -> Callable[[], None]:
        """Call ``listener`` with every newly published state.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            with contextlib.suppress(ValueError):
                self._listeners.remove(listener)

        return unsubscribe

    def on_fault(self, listener: Callable[[Fault], None]) -> None:
        """Call ``listener`` whenever a tick records a new fault."""
        self._fault_listeners.append(listener)

    # -- Lifecycle ----------------------------------------------------------

    def arm(self) -> bool:
        """Move from IDLE to POLLING once a model and a camera stream exist.

        Returns:
            True if the loop is armed after the call.
        """
        if self._phase is not LoopPhase.IDLE:
            return True
        if not self._classifier.is_loaded:
            logger.debug("Not arming recognition loop: model not loaded")
            return False
        if self._frame_source.handle is None:
            logger.debug("Not arming recognition loop: no camera stream")
            return False

        if self._fault is not None and self._fault.kind is FaultKind.DEVICE:
            self._fault = None
        self._phase = LoopPhase.POLLING
        logger.info("Recognition loop armed (interval=%.3fs, threshold=%.2f)", self._interval, self._threshold)
        return True

    def start(self) -> None:
        """Start the polling timer. Must be called from a running event loop."""
        if self.is_running:
            return
        self._timer = asyncio.get_running_loop().create_task(self._run(), name="recognition-timer")

    async def stop(self) -> None:
        """Cancel the timer and wait for an in-flight tick to finish.

        When this returns no tick is running and none will fire, so the frame
        source can be released safely.
        """
        timer, self._timer = self._timer, None
        if timer is not None:
            timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await timer

        pending = list(self._ticks)
        if pending:
            logger.debug("Waiting for %d in-flight tick(s)", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)

        if self._phase is not LoopPhase.IDLE:
            logger.info("Recognition loop stopped")
        self._phase = LoopPhase.IDLE

    # -- Ticks --------------------------------------------------------------

    async def tick(self) -> TickOutcome:
        """Run one capture/inference/interpretation cycle if allowed."""
        if self._phase is LoopPhase.IDLE:
            return TickOutcome.SKIPPED_IDLE
        if self._busy:
            self._skipped += 1
            logger.debug("Skipping tick: previous inference still running")
            return TickOutcome.SKIPPED_BUSY

        self._busy = True
        try:
            return await self._process()
        except InferenceError as exc:
            logger.warning("Inference failed: %s", exc)
            self._record_fault(FaultKind.INFERENCE, str(exc))
            return TickOutcome.FAILED
        except Exception as exc:
            logger.exception("Unexpected error in recognition tick")
            self._record_fault(FaultKind.INTERNAL, f"{type(exc).__name__}: {exc}")
            return TickOutcome.FAILED
        finally:
            self._busy = False
            if self._phase is not LoopPhase.IDLE:
                self._phase = LoopPhase.POLLING

    async def _process(self) -> TickOutcome:
        self._phase = LoopPhase.CAPTURING
        try:
            frame = self._frame_source.current_frame()
        except FrameNotReadyError:
            logger.debug("Frame not ready; tick abandoned")
            return TickOutcome.FRAME_NOT_READY
        except DeviceError as exc:
            logger.error("Camera failure, disarming recognition loop: %s", exc)
            self._phase = LoopPhase.IDLE
            self._record_fault(FaultKind.DEVICE, str(exc))
            return TickOutcome.FAILED

        self._phase = LoopPhase.PREPROCESSING
        try:
            tensor = self._preprocessor.prepare(frame)
        except FrameNotReadyError:
            logger.debug("Frame not decodable; tick abandoned")
            return TickOutcome.FRAME_NOT_READY
        finally:
            del frame

        self._phase = LoopPhase.INFERRING
        vector = await self._pool.run(self._classifier.infer, tensor)
        del tensor

        self._phase = LoopPhase.INTERPRETING
        self._publish(interpret(vector, self._labels, self._threshold))
        return TickOutcome.PUBLISHED

    def _publish(self, state: RecognitionState) -> None:
        self._state = state
        if self._fault is not None and self._fault.kind in (FaultKind.INFERENCE, FaultKind.INTERNAL):
            self._fault = None
        logger.debug("Published %s (label=%s, confidence=%.3f)", state.status, state.label, state.confidence)

        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("Recognition state listener failed")

    def _record_fault(self, kind: FaultKind, message: str) -> None:
        fault = Fault(kind, message)
        self._fault = fault
        for listener in list(self._fault_listeners):
            try:
                listener(fault)
            except Exception:
                logger.exception("Fault listener failed")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            task = asyncio.get_running_loop().create_task(self.tick(), name="recognition-tick")
            self._ticks.add(task)
            task.add_done_callback(self._ticks.discard)
