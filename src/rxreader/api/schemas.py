"""Pydantic response schemas for the RxReader API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class MedicineResponse(BaseModel):
    """Static metadata for one medicine."""

    name: str
    indication: str


class FaultResponse(BaseModel):
    """A surfaced error condition."""

    kind: str = Field(description="Fault kind: 'device', 'model_load', 'inference', or 'internal'")
    message: str
    timestamp: float


class RecognitionResponse(BaseModel):
    """Current recognition snapshot."""

    label: str | None = Field(description="Recognized generic medicine name, or null when not confident")
    confidence: float = Field(ge=0.0, le=1.0, description="Highest class score of the latest inference")
    status: str = Field(description="Recognition status: 'confident', 'uncertain', or 'no_model'")
    message: str = Field(description="Text to display to the user")
    phase: str
    facing: str = Field(description="Active camera: 'front' or 'back'")
    model_ready: bool
    camera_ready: bool
    fault: FaultResponse | None = None
    medicine: MedicineResponse | None = None


class ToggleResponse(BaseModel):
    """Result of the camera toggle command."""

    facing: str
    camera_ready: bool


class LabelsResponse(BaseModel):
    """Ordered label set of the loaded model."""

    labels: list[str]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    model_ready: bool
    camera_ready: bool
    phase: str
    active_inferences: int
    completed_inferences: int
    skipped_ticks: int
    last_inference_ms: float | None


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
