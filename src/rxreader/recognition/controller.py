"""Recognition controller: owns the model, the camera, the loop and the facing mode.

One controller instance is created per process and handed to the presentation
layer. Lifecycle:

    startup()        load model once, acquire camera, arm and start the loop
    toggle_facing()  stop loop, swap camera stream, re-arm and restart
    shutdown()       stop loop, release camera, drop model session

All three are serialized by a single lock.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from rxreader.camera.frame_source import CameraFacing, OpenCVFrameSource
from rxreader.errors import DeviceError, ModelLoadError
from rxreader.ml.classifier import OnnxClassifier
from rxreader.ml.inference import InferencePool
from rxreader.ml.labels import LabelSet, MedicineCatalog
from rxreader.ml.model_manager import OnnxModelManager
from rxreader.ml.preprocessing import FramePreprocessor
from rxreader.recognition.loop import RecognitionLoop
from rxreader.recognition.state import Fault, FaultKind, LoopPhase, RecognitionState, RecognitionStatus

if TYPE_CHECKING:
    from pathlib import Path

    from rxreader.camera.frame_source import FrameSource, StreamHandle
    from rxreader.config import Settings
    from rxreader.ml.classifier import ImageClassifier
    from rxreader.ml.labels import MedicineInfo

logger = logging.getLogger(__name__)

MESSAGE_LOADING = "Loading model..."
MESSAGE_MODEL_UNAVAILABLE = "The recognition model could not be loaded. Restart the application to try again."
MESSAGE_CAMERA = "Camera access is required. Allow access to the camera and try again."
MESSAGE_SCANNING = "Point the camera at a medicine package."
MESSAGE_NOT_RECOGNIZED = "Not recognized"
MESSAGE_STOPPED = "Recognition stopped."


@dataclass(frozen=True)
class RecognitionSnapshot:
    """Everything the presentation layer needs for one render."""

    state: RecognitionState
    phase: LoopPhase
    facing: CameraFacing
    model_ready: bool
    camera_ready: bool
    fault: Fault | None
    medicine: MedicineInfo | None
    message: str


def status_message(
    state: RecognitionState, fault: Fault | None, *, model_ready: bool, stopped: bool = False
) -> str:
    """Pick the user-facing message for a snapshot."""
    if stopped:
        return MESSAGE_STOPPED
    if fault is not None and fault.kind is FaultKind.MODEL_LOAD:
        return MESSAGE_MODEL_UNAVAILABLE
    if not model_ready:
        return MESSAGE_LOADING
    if fault is not None and fault.kind is FaultKind.DEVICE:
        return MESSAGE_CAMERA
    if state.status is RecognitionStatus.CONFIDENT and state.label is not None:
        return state.label
    if state.status is RecognitionStatus.UNCERTAIN:
        return MESSAGE_NOT_RECOGNIZED
    return MESSAGE_SCANNING


class RecognitionController:
    """Single owner of all recognition resources."""

    def __init__(
        self,
        frame_source: FrameSource,
        classifier: ImageClassifier,
        labels: LabelSet,
        *,
        catalog: MedicineCatalog | None = None,
        preprocessor: FramePreprocessor | None = None,
        pool: InferencePool | None = None,
        threshold: float = 0.70,
        interval: float = 1.0,
        initial_facing: CameraFacing = CameraFacing.FRONT,
    ) -> None:
        self._frame_source = frame_source
        self._classifier = classifier
        self._labels = labels
        self._catalog = catalog or MedicineCatalog.default()
        self._pool = pool or InferencePool()
        self._facing = initial_facing
        self._lock = asyncio.Lock()
        self._model_fault: Fault | None = None
        self._device_fault: Fault | None = None
        self._load_attempted = False
        self._closed = False
        self._teardowns: set[asyncio.Task[None]] = set()

        self.loop = RecognitionLoop(
            frame_source,
            preprocessor or FramePreprocessor(),
            classifier,
            labels,
            self._pool,
            threshold=threshold,
            interval=interval,
        )
        self.loop.on_fault(self._on_loop_fault)

    @classmethod
    def from_settings(cls, settings: Settings) -> RecognitionController:
        """Build the production controller (ONNX model, OpenCV camera)."""
        labels = LabelSet.from_file(settings.labels_path) if settings.labels_path else LabelSet.default()
        classifier = OnnxClassifier(OnnxModelManager(settings), labels, apply_softmax=settings.apply_softmax)
        return cls(
            OpenCVFrameSource.from_settings(settings),
            classifier,
            labels,
            preprocessor=FramePreprocessor(settings.input_size),
            threshold=settings.confidence_threshold,
            interval=settings.poll_interval_ms / 1000,
            initial_facing=CameraFacing(settings.initial_facing),
        )

    # -- Observation --------------------------------------------------------

    @property
    def facing(self) -> CameraFacing:
        return self._facing

    @property
    def labels(self) -> LabelSet:
        return self._labels

    @property
    def catalog(self) -> MedicineCatalog:
        return self._catalog

    @property
    def pool(self) -> InferencePool:
        return self._pool

    @property
    def stream(self) -> StreamHandle | None:
        return self._frame_source.handle

    def snapshot(self) -> RecognitionSnapshot:
        """Return an immutable view of the current recognition status."""
        state = self.loop.state
        model_ready = self._classifier.is_loaded
        device_fault = self._current_device_fault()
        fault = self._model_fault or device_fault or self.loop.fault
        return RecognitionSnapshot(
            state=state,
            phase=self.loop.phase,
            facing=self._facing,
            model_ready=model_ready,
            camera_ready=self._frame_source.handle is not None and device_fault is None,
            fault=fault,
            medicine=self._catalog.get(state.label),
            message=status_message(state, fault, model_ready=model_ready, stopped=self._closed),
        )

    # -- Lifecycle ----------------------------------------------------------

    async def startup(self, model_path: Path | None = None) -> None:
        """Load the model (once), acquire the camera and start polling."""
        async with self._lock:
            if not self._load_attempted:
                self._load_attempted = True
                await self._load_model(model_path)
            await self._acquire(self._facing)
            self._start_loop()

    async def toggle_facing(self) -> CameraFacing:
        """Switch between the front and back camera.

        The loop is stopped before the old stream is released and restarted
        only after the new one is acquired. If the new camera cannot be opened
        the facing still changes and a device fault is surfaced.
        """
        async with self._lock:
            if self._closed:
                return self._facing
            await self.loop.stop()
            self._facing = self._facing.toggled()
            logger.info("Switching camera to %s", self._facing)
            await self._acquire(self._facing)
            self._start_loop()
            return self._facing

    async def shutdown(self) -> None:
        """Stop the timer, then release the camera and the model."""
        async with self._lock:
            if self._closed:
                return
            self._closed = True
            await self.loop.stop()
            self._frame_source.release()
            self._classifier.close()
            self._pool.shutdown()
            logger.info("Recognition controller shut down")
        if self._teardowns:
            await asyncio.gather(*self._teardowns, return_exceptions=True)

    # -- Internal -----------------------------------------------------------

    async def _load_model(self, model_path: Path | None) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._classifier.load, model_path)
        except ModelLoadError as exc:
            logger.error("Model load failed; recognition disabled until restart: %s", exc)
            self._model_fault = Fault(FaultKind.MODEL_LOAD, str(exc))

    async def _acquire(self, facing: CameraFacing) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._frame_source.acquire, facing)
        except DeviceError as exc:
            logger.warning("Camera unavailable: %s", exc)
            self._device_fault = Fault(FaultKind.DEVICE, str(exc))
            return
        self._device_fault = None

    def _start_loop(self) -> None:
        if self.loop.arm():
            self.loop.start()

    def _current_device_fault(self) -> Fault | None:
        if self._device_fault is not None:
            return self._device_fault
        fault = self.loop.fault
        if fault is not None and fault.kind is FaultKind.DEVICE:
            return fault
        return None

    def _on_loop_fault(self, fault: Fault) -> None:
        if fault.kind is not FaultKind.DEVICE or self._closed:
            return
        task = asyncio.get_running_loop().create_task(self._release_lost_device(fault), name="camera-teardown")
        self._teardowns.add(task)
        task.add_done_callback(self._teardowns.discard)

    async def _release_lost_device(self, fault: Fault) -> None:
        async with self._lock:
            # Stale once a toggle or shutdown has handled the stream.
            if self._closed or self.loop.fault is not fault:
                return
            await self.loop.stop()
            self._frame_source.release()
            self._device_fault = fault
            logger.warning("Camera lost; stream released until the camera is switched")
