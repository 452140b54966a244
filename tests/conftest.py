"""Shared test doubles for the camera, the classifier and OpenCV captures."""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING

import cv2
import numpy as np
import pytest

from rxreader.camera.frame_source import CameraFacing, StreamHandle
from rxreader.errors import DeviceError, FrameNotReadyError, InferenceError, ModelLoadError
from rxreader.ml.labels import LabelSet

if TYPE_CHECKING:
    from pathlib import Path

    from numpy.typing import NDArray


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class FakeClassifier:
    """Classifier double that records calls and concurrency."""

    def __init__(self, labels: LabelSet, *, fail_load: bool = False, delay: float = 0.0) -> None:
        self.labels = labels
        self.fail_load = fail_load
        self.delay = delay
        self.vector: NDArray[np.float32] = np.zeros(len(labels), dtype=np.float32)
        self.error: Exception | None = None
        self.gate: threading.Event | None = None
        self.load_calls = 0
        self.infer_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self._loaded = False
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def load(self, path: Path | None = None) -> object:
        self.load_calls += 1
        if self.fail_load:
            raise ModelLoadError("model file missing")
        self._loaded = True
        return object()

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        with self._lock:
            self.infer_calls += 1
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if self.delay:
                time.sleep(self.delay)
            if self.error is not None:
                raise self.error
            if self.vector.shape[0] != len(self.labels):
                raise InferenceError(f"Model returned {self.vector.shape[0]} scores, expected {len(self.labels)}")
            return self.vector.copy()
        finally:
            with self._lock:
                self.in_flight -= 1

    def close(self) -> None:
        self._loaded = False


# ---------------------------------------------------------------------------
# Frame source
# ---------------------------------------------------------------------------


class FakeFrameSource:
    """Frame source double holding at most one handle."""

    def __init__(self, *, fail_facings: set[CameraFacing] | None = None) -> None:
        self.fail_facings = fail_facings or set()
        self.frame: NDArray[np.uint8] | None = np.full((480, 640, 3), 128, dtype=np.uint8)
        self.frame_error: Exception | None = None
        self.acquired: list[CameraFacing] = []
        self.released = 0
        self._handle: StreamHandle | None = None
        self._next_id = 1

    @property
    def handle(self) -> StreamHandle | None:
        return self._handle

    def acquire(self, facing: CameraFacing) -> StreamHandle:
        self.release()
        self.acquired.append(facing)
        if facing in self.fail_facings:
            raise DeviceError(f"{facing} camera denied")
        self._handle = StreamHandle(
            stream_id=self._next_id,
            facing=facing,
            device_index=0 if facing is CameraFacing.FRONT else 1,
            requested_size=(640, 480),
            actual_size=(640, 480),
        )
        self._next_id += 1
        return self._handle

    def current_frame(self) -> NDArray[np.uint8]:
        if self.frame_error is not None:
            raise self.frame_error
        if self._handle is None or self.frame is None:
            raise FrameNotReadyError("no frame")
        return self.frame

    def release(self, handle: StreamHandle | None = None) -> None:
        if self._handle is not None:
            self.released += 1
        self._handle = None


# ---------------------------------------------------------------------------
# OpenCV capture
# ---------------------------------------------------------------------------


class DeviceRegistry:
    """Tracks fake cv2.VideoCapture handles across a test."""

    def __init__(self, *, denied: set[int] | None = None, actual_size: tuple[int, int] = (640, 480)) -> None:
        self.denied = denied or set()
        self.actual_size = actual_size
        self.open_handles: set[int] = set()
        self.opening = 0
        self.max_opening = 0
        self.opened: list[int] = []
        self.frames_left: int | None = None
        self.lose_device = False
        self._lock = threading.Lock()

    def factory(self, index: int) -> FakeCapture:
        with self._lock:
            self.opening += 1
            self.max_opening = max(self.max_opening, self.opening)
        try:
            time.sleep(0.005)
            capture = FakeCapture(self, index)
        finally:
            with self._lock:
                self.opening -= 1
        return capture


class FakeCapture:
    def __init__(self, registry: DeviceRegistry, index: int) -> None:
        self._registry = registry
        self.index = index
        self.props: dict[int, float] = {}
        self._open = index not in registry.denied
        if self._open:
            registry.open_handles.add(id(self))
            registry.opened.append(index)

    def isOpened(self) -> bool:  # noqa: N802
        return self._open and not self._registry.lose_device

    def set(self, prop: int, value: float) -> bool:
        self.props[prop] = value
        return True

    def get(self, prop: int) -> float:
        if prop == cv2.CAP_PROP_FRAME_WIDTH:
            return float(self._registry.actual_size[0])
        if prop == cv2.CAP_PROP_FRAME_HEIGHT:
            return float(self._registry.actual_size[1])
        return self.props.get(prop, 0.0)

    def read(self) -> tuple[bool, NDArray[np.uint8] | None]:
        if not self.isOpened():
            return False, None
        if self._registry.frames_left is not None:
            if self._registry.frames_left <= 0:
                return False, None
            self._registry.frames_left -= 1
        width, height = self._registry.actual_size
        return True, np.full((height, width, 3), self.index * 10, dtype=np.uint8)

    def release(self) -> None:
        self._registry.open_handles.discard(id(self))
        self._open = False


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def labels() -> LabelSet:
    return LabelSet.default()


@pytest.fixture()
def small_labels() -> LabelSet:
    return LabelSet(["Ibuprofen", "Quinine", "Tramadol"])


@pytest.fixture()
def classifier(small_labels: LabelSet) -> FakeClassifier:
    return FakeClassifier(small_labels)


@pytest.fixture()
def frame_source() -> FakeFrameSource:
    return FakeFrameSource()


@pytest.fixture()
def registry() -> DeviceRegistry:
    return DeviceRegistry()
