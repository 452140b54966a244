"""Frame preprocessing for the medicine classifier.

Turns a raw camera frame (OpenCV BGR, BGRA or grayscale ``uint8`` array) into
the ``[1, H, W, 3]`` float32 RGB tensor the classifier expects, with values
scaled to [0, 1].

The whole frame is resampled with bilinear interpolation (``cv2.INTER_LINEAR``);
nothing is cropped, so the aspect ratio of the source is not preserved.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from rxreader.errors import FrameNotReadyError

if TYPE_CHECKING:
    from numpy.typing import NDArray

DEFAULT_INPUT_SIZE: int = 224

_COLOR_CONVERSIONS: dict[int, int] = {
    1: cv2.COLOR_GRAY2RGB,
    3: cv2.COLOR_BGR2RGB,
    4: cv2.COLOR_BGRA2RGB,
}


class FramePreprocessor:
    """Resizes, colour-converts and normalizes frames for model input."""

    def __init__(self, input_size: int = DEFAULT_INPUT_SIZE) -> None:
        self._size = input_size

    @property
    def input_shape(self) -> tuple[int, int, int, int]:
        return (1, self._size, self._size, 3)

    def prepare(self, frame: NDArray[np.generic] | None) -> NDArray[np.float32]:
        """Convert a frame into a batched, normalized RGB tensor.

        Args:
            frame: HxW, HxWx1, HxWx3 (BGR) or HxWx4 (BGRA) array. ``uint8``
                and ``uint16`` values are scaled by their full range; float
                frames are assumed to be in [0, 1] already and are clipped.

        Returns:
            A new float32 array of shape ``(1, size, size, 3)``. It shares no
            memory with ``frame``.

        Raises:
            FrameNotReadyError: If the frame is missing, empty or has an
                unsupported layout.
        """
        if frame is None or frame.size == 0:
            raise FrameNotReadyError("No frame decoded yet")

        channels = 1 if frame.ndim == 2 else frame.shape[2] if frame.ndim == 3 else 0
        conversion = _COLOR_CONVERSIONS.get(channels)
        if conversion is None:
            raise FrameNotReadyError(f"Unsupported frame shape {frame.shape}")

        scale = _scale_for(frame.dtype)
        source = frame.astype(np.float32) if scale == 1.0 and frame.dtype != np.float32 else frame

        resized = cv2.resize(source, (self._size, self._size), interpolation=cv2.INTER_LINEAR)
        if resized.ndim == 3 and resized.shape[2] == 1:
            resized = resized[:, :, 0]
        rgb = cv2.cvtColor(resized, conversion)

        tensor = rgb.astype(np.float32) / np.float32(scale)
        np.clip(tensor, 0.0, 1.0, out=tensor)
        return np.expand_dims(tensor, axis=0)


def _scale_for(dtype: np.dtype[np.generic]) -> float:
    if dtype == np.uint8:
        return 255.0
    if dtype == np.uint16:
        return 65535.0
    if np.issubdtype(dtype, np.floating):
        return 1.0
    raise FrameNotReadyError(f"Unsupported frame dtype {dtype}")
