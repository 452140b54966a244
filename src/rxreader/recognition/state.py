"""Recognition state values and the confidence-gated interpretation policy."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from rxreader.errors import InferenceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from rxreader.ml.labels import LabelSet

DEFAULT_CONFIDENCE_THRESHOLD: float = 0.70


class RecognitionStatus(StrEnum):
    CONFIDENT = "confident"
    UNCERTAIN = "uncertain"
    NO_MODEL = "no_model"


class LoopPhase(StrEnum):
    IDLE = "idle"
    POLLING = "polling"
    CAPTURING = "capturing"
    PREPROCESSING = "preprocessing"
    INFERRING = "inferring"
    INTERPRETING = "interpreting"


class FaultKind(StrEnum):
    DEVICE = "device"
    MODEL_LOAD = "model_load"
    INFERENCE = "inference"
    INTERNAL = "internal"


@dataclass(frozen=True)
class RecognitionState:
    """Latest classification outcome.

    ``index`` is the predicted label index when ``status`` is CONFIDENT.
    """

    label: str | None = None
    confidence: float = 0.0
    status: RecognitionStatus = RecognitionStatus.NO_MODEL
    index: int | None = None


@dataclass(frozen=True)
class Fault:
    """A surfaced, non-transient error."""

    kind: FaultKind
    message: str
    timestamp: float = field(default_factory=time.time)


def interpret(
    vector: NDArray[np.floating],
    labels: LabelSet,
    threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
) -> RecognitionState:
    """Map a probability vector to a recognition state.

    The predicted index is the first index holding the maximum value, so ties
    always resolve to the lowest index. A maximum equal to ``threshold`` counts
    as confident.

    Raises:
        InferenceError: If the vector length does not match ``labels``.
    """
    scores = np.asarray(vector).reshape(-1)
    if not np.issubdtype(scores.dtype, np.floating):
        scores = scores.astype(np.float64)
    if scores.shape[0] != len(labels):
        raise InferenceError(f"Probability vector has {scores.shape[0]} entries, expected {len(labels)}")

    index = int(np.argmax(scores))
    top = scores[index]
    confidence = min(max(float(top), 0.0), 1.0)

    # Compare in the vector's own precision so a float32 0.7 meets a 0.7 threshold.
    if top >= scores.dtype.type(threshold):
        return RecognitionState(
            label=labels.name(index),
            confidence=confidence,
            status=RecognitionStatus.CONFIDENT,
            index=index,
        )
    return RecognitionState(label=None, confidence=confidence, status=RecognitionStatus.UNCERTAIN)
