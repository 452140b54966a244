"""Live camera frame source.

Wraps an OpenCV ``VideoCapture`` for one of two logical cameras (front or
back). Exactly one device handle is held at a time: acquiring a new stream
releases the previous one first, and all device access is serialized by a lock
so a frame read never races a release.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

import cv2

from rxreader.errors import DeviceError, FrameNotReadyError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    import numpy as np
    from numpy.typing import NDArray

    from rxreader.config import Settings

logger = logging.getLogger(__name__)


class CameraFacing(StrEnum):
    FRONT = "front"
    BACK = "back"

    def toggled(self) -> CameraFacing:
        return CameraFacing.BACK if self is CameraFacing.FRONT else CameraFacing.FRONT


@dataclass(frozen=True)
class StreamHandle:
    """An acquired camera stream.

    ``requested_size`` is the resolution hint sent to the device;
    ``actual_size`` is what the device reported back and may differ.
    """

    stream_id: int
    facing: CameraFacing
    device_index: int
    requested_size: tuple[int, int]
    actual_size: tuple[int, int]


class FrameSource(Protocol):
    """Protocol for a switchable live frame source."""

    @property
    def handle(self) -> StreamHandle | None:
        """Return the currently held stream, if any."""
        ...

    def acquire(self, facing: CameraFacing) -> StreamHandle:
        """Release any held stream, then open the camera for ``facing``.

        Raises:
            DeviceError: If the camera is unavailable or access is denied.
        """
        ...

    def current_frame(self) -> NDArray[np.uint8]:
        """Return the latest decoded frame.

        Raises:
            FrameNotReadyError: If no frame has been decoded yet.
            DeviceError: If the device was lost.
        """
        ...

    def release(self, handle: StreamHandle | None = None) -> None:
        """Release ``handle`` (or whatever is held when None)."""
        ...


class OpenCVFrameSource:
    """Frame source backed by ``cv2.VideoCapture``."""

    def __init__(
        self,
        device_indices: Mapping[CameraFacing, int],
        frame_size: tuple[int, int] = (1280, 720),
        capture_factory: Callable[[int], cv2.VideoCapture] | None = None,
    ) -> None:
        self._device_indices = dict(device_indices)
        self._frame_size = frame_size
        self._capture_factory = capture_factory or cv2.VideoCapture
        self._lock = threading.Lock()
        self._capture: cv2.VideoCapture | None = None
        self._handle: StreamHandle | None = None
        self._stream_ids = itertools.count(1)

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenCVFrameSource:
        return cls(
            device_indices={
                CameraFacing.FRONT: settings.front_camera_index,
                CameraFacing.BACK: settings.back_camera_index,
            },
            frame_size=(settings.frame_width, settings.frame_height),
        )

    @property
    def handle(self) -> StreamHandle | None:
        return self._handle

    def acquire(self, facing: CameraFacing) -> StreamHandle:
        with self._lock:
            self._release_locked()

            index = self._device_indices[facing]
            try:
                capture = self._capture_factory(index)
            except cv2.error as exc:
                raise DeviceError(f"Could not open {facing} camera (device {index}): {exc}") from exc

            if not capture.isOpened():
                capture.release()
                raise DeviceError(f"Camera access denied or unavailable: {facing} camera (device {index})")

            width, height = self._frame_size
            capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
            capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
            capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)
            actual = (
                int(capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )

            handle = StreamHandle(
                stream_id=next(self._stream_ids),
                facing=facing,
                device_index=index,
                requested_size=self._frame_size,
                actual_size=actual,
            )
            self._capture = capture
            self._handle = handle

        if actual != self._frame_size:
            logger.info("Camera %s delivers %dx%d (requested %dx%d)", facing, *actual, *self._frame_size)
        logger.info("Acquired %s camera (device %d, stream %d)", facing, index, handle.stream_id)
        return handle

    def current_frame(self) -> NDArray[np.uint8]:
        with self._lock:
            capture = self._capture
            if capture is None:
                raise FrameNotReadyError("No camera stream acquired")

            ok, frame = capture.read()
            if ok and frame is not None:
                return frame
            if not capture.isOpened():
                raise DeviceError("Camera stream was lost")
            raise FrameNotReadyError("Camera has not produced a frame yet")

    def release(self, handle: StreamHandle | None = None) -> None:
        with self._lock:
            if handle is not None and self._handle is not None and handle.stream_id != self._handle.stream_id:
                logger.debug("Ignoring release of stale stream %d", handle.stream_id)
                return
            self._release_locked()

    def _release_locked(self) -> None:
        if self._capture is None:
            return
        handle = self._handle
        self._capture.release()
        self._capture = None
        self._handle = None
        if handle is not None:
            logger.info("Released %s camera (stream %d)", handle.facing, handle.stream_id)
