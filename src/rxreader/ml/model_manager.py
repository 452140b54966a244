"""Model manager: resolve the classifier asset and build ONNX sessions.

The classifier asset is either a local ONNX file or a file in a HuggingFace Hub
repository that is downloaded into ``models_dir`` on first use. Session
providers and threading follow the configured device.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from rxreader.errors import ModelLoadError

if TYPE_CHECKING:
    from rxreader.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model asset resolution and session creation."""

    def resolve_model_path(self) -> Path:
        """Return a local path to the configured model file."""
        ...

    def create_session(self, model_path: Path) -> InferenceSession:
        """Create an InferenceSession for a local model file."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Locates (or downloads) the classifier model and opens ONNX sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._downloaded: Path | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def resolve_model_path(self) -> Path:
        """Return the model path, downloading from HuggingFace if configured.

        Raises:
            ModelLoadError: If the local file is missing or the download fails.
        """
        repo_id = self._settings.model_repo_id
        if repo_id is None:
            path = Path(self._settings.model_path)
            if not path.is_file():
                raise ModelLoadError(f"Model file not found: {path}")
            return path

        if self._downloaded is not None and self._downloaded.exists():
            return self._downloaded

        self._models_dir.mkdir(parents=True, exist_ok=True)
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=repo_id,
                    filename=self._settings.model_filename,
                    local_dir=str(self._models_dir),
                )
            )
        except Exception as exc:
            raise ModelLoadError(f"Could not download {self._settings.model_filename} from {repo_id}: {exc}") from exc

        self._downloaded = downloaded
        logger.info("Downloaded %s to %s", self._settings.model_filename, downloaded)
        return downloaded

    def create_session(self, model_path: Path) -> InferenceSession:
        """Open an InferenceSession for ``model_path``.

        Raises:
            ModelLoadError: If onnxruntime rejects the file.
        """
        try:
            session = InferenceSession(
                str(model_path),
                sess_options=self._session_options,
                providers=self._providers,
            )
        except Exception as exc:
            raise ModelLoadError(f"Could not load model {model_path}: {exc}") from exc
        logger.info("Loaded session for %s", model_path)
        return session

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
