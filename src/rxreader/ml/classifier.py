"""Medicine package classifier backed by an ONNX model.

The model is treated as an opaque function from a ``[1, H, W, 3]`` float32
tensor to an N-length probability vector, where N is the size of the label set.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import numpy as np

from rxreader.errors import InferenceError, ModelLoadError

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from rxreader.ml.labels import LabelSet
    from rxreader.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelHandle:
    """Describes a loaded model session."""

    path: Path
    input_name: str
    output_name: str
    output_width: int | None


class ImageClassifier(Protocol):
    """Protocol for the classifier adapter used by the recognition loop."""

    @property
    def is_loaded(self) -> bool:
        """Return True once a model has been loaded successfully."""
        ...

    def load(self, path: Path | None = None) -> ModelHandle:
        """Load the model.

        Raises:
            ModelLoadError: If the model cannot be loaded.
        """
        ...

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the model on one preprocessed tensor.

        Returns:
            Probability vector with one entry per label.

        Raises:
            InferenceError: If the run fails or the output is invalid.
        """
        ...

    def close(self) -> None:
        """Drop the model session."""
        ...


def softmax(logits: NDArray[np.float32]) -> NDArray[np.float32]:
    shifted = logits - np.max(logits)
    exp = np.exp(shifted)
    return (exp / np.sum(exp)).astype(np.float32)


class OnnxClassifier:
    """Owns the ONNX session for the medicine classifier."""

    def __init__(self, model_manager: ModelManager, labels: LabelSet, *, apply_softmax: bool = False) -> None:
        self._model_manager = model_manager
        self._labels = labels
        self._apply_softmax = apply_softmax
        self._session: InferenceSession | None = None
        self._handle: ModelHandle | None = None
        self._load_error: ModelLoadError | None = None

    @property
    def is_loaded(self) -> bool:
        return self._session is not None

    @property
    def handle(self) -> ModelHandle | None:
        return self._handle

    @property
    def labels(self) -> LabelSet:
        return self._labels

    def load(self, path: Path | None = None) -> ModelHandle:
        """Load the model once.

        A second call returns the existing handle, or re-raises the original
        failure; a failed load is never retried.
        """
        if self._handle is not None:
            return self._handle
        if self._load_error is not None:
            raise self._load_error

        try:
            model_path = path if path is not None else self._model_manager.resolve_model_path()
            session = self._model_manager.create_session(model_path)
            handle = self._describe(session, model_path)
        except ModelLoadError as exc:
            self._load_error = exc
            raise

        self._session = session
        self._handle = handle
        logger.info(
            "Classifier ready (model=%s, input=%s, output=%s, labels=%d)",
            handle.path,
            handle.input_name,
            handle.output_name,
            len(self._labels),
        )
        return handle

    def infer(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        session = self._session
        handle = self._handle
        if session is None or handle is None:
            raise InferenceError("Model is not loaded")

        try:
            outputs = session.run([handle.output_name], {handle.input_name: tensor})
        except Exception as exc:
            raise InferenceError(f"Model run failed: {exc}") from exc

        vector = np.array(outputs[0], dtype=np.float32).reshape(-1)
        del outputs

        if self._apply_softmax:
            vector = softmax(vector)

        expected = len(self._labels)
        if vector.shape[0] != expected:
            raise InferenceError(f"Model returned {vector.shape[0]} scores, expected {expected}")
        if not np.all(np.isfinite(vector)):
            raise InferenceError("Model returned non-finite scores")
        if np.any(vector < 0):
            raise InferenceError("Model returned negative scores; enable RXREADER_APPLY_SOFTMAX for logit outputs")
        return vector

    def close(self) -> None:
        if self._session is not None:
            logger.info("Releasing classifier session")
        self._session = None

    # -- Internal -----------------------------------------------------------

    def _describe(self, session: InferenceSession, model_path: Path) -> ModelHandle:
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ModelLoadError(f"Model {model_path} has no inputs or outputs")

        last_dim = outputs[0].shape[-1] if outputs[0].shape else None
        output_width = last_dim if isinstance(last_dim, int) else None
        if output_width is not None and output_width != len(self._labels):
            raise ModelLoadError(
                f"Model {model_path} outputs {output_width} classes but the label set has {len(self._labels)}"
            )

        return ModelHandle(
            path=model_path,
            input_name=inputs[0].name,
            output_name=outputs[0].name,
            output_width=output_width,
        )
