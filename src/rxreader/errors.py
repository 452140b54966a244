"""Exception taxonomy shared by the camera, model and recognition layers."""

from __future__ import annotations


class RxReaderError(Exception):
    """Base class for all RxReader errors."""


class DeviceError(RxReaderError):
    """The camera is unavailable or access to it was denied."""


class ModelLoadError(RxReaderError):
    """The classifier model could not be loaded. Fatal for the process lifetime."""


class FrameNotReadyError(RxReaderError):
    """No decodable frame is available yet. Transient; the tick is skipped."""


class InferenceError(RxReaderError):
    """A single inference call failed or returned an invalid result."""
