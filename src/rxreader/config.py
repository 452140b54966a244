"""Environment-based configuration for RxReader."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from RXREADER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RXREADER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: str = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Model asset: a local file, or a HuggingFace Hub repo/file pair
    model_path: str = "model/model.onnx"
    model_repo_id: str | None = None
    model_filename: str = "model.onnx"
    models_dir: str = "models"
    apply_softmax: bool = False

    # Label set file (None = built-in medicine list)
    labels_path: str | None = None

    # Recognition
    input_size: int = Field(default=224, ge=1)
    confidence_threshold: float = Field(default=0.70, ge=0.0, le=1.0)
    poll_interval_ms: int = Field(default=1000, ge=1)

    # Camera
    initial_facing: Literal["front", "back"] = "front"
    front_camera_index: int = Field(default=0, ge=0)
    back_camera_index: int = Field(default=1, ge=0)
    frame_width: int = Field(default=1280, ge=1)
    frame_height: int = Field(default=720, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
