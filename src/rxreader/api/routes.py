"""API route definitions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException, Request, status

from rxreader.api.middleware import verify_api_key
from rxreader.api.schemas import (
    ErrorResponse,
    FaultResponse,
    HealthResponse,
    LabelsResponse,
    MedicineResponse,
    RecognitionResponse,
    ToggleResponse,
)

if TYPE_CHECKING:
    from rxreader.config import Settings
    from rxreader.recognition.controller import RecognitionController, RecognitionSnapshot

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_controller(request: Request) -> RecognitionController:
    controller: RecognitionController = request.app.state.controller
    return controller


def _to_response(snapshot: RecognitionSnapshot) -> RecognitionResponse:
    state = snapshot.state
    fault = snapshot.fault
    medicine = snapshot.medicine
    return RecognitionResponse(
        label=state.label,
        confidence=state.confidence,
        status=str(state.status),
        message=snapshot.message,
        phase=str(snapshot.phase),
        facing=str(snapshot.facing),
        model_ready=snapshot.model_ready,
        camera_ready=snapshot.camera_ready,
        fault=(
            FaultResponse(kind=str(fault.kind), message=fault.message, timestamp=fault.timestamp)
            if fault is not None
            else None
        ),
        medicine=(MedicineResponse(name=medicine.name, indication=medicine.indication) if medicine else None),
    )


@router.get(
    "/recognition",
    response_model=RecognitionResponse,
    summary="Current recognition result",
)
async def get_recognition(request: Request) -> RecognitionResponse:
    """Return the latest recognition state with its display message."""
    return _to_response(_get_controller(request).snapshot())


@router.post(
    "/camera/toggle",
    response_model=ToggleResponse,
    responses={status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse}},
    summary="Switch between front and back camera",
)
async def toggle_camera(request: Request) -> ToggleResponse:
    """Swap the active camera and restart recognition on the new stream."""
    controller = _get_controller(request)
    facing = await controller.toggle_facing()
    snapshot = controller.snapshot()
    if not snapshot.camera_ready:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Camera unavailable after switching to {facing}",
        )
    return ToggleResponse(facing=str(facing), camera_ready=snapshot.camera_ready)


@router.get(
    "/labels",
    response_model=LabelsResponse,
    summary="List recognizable medicines",
)
async def list_labels(request: Request) -> LabelsResponse:
    """Return the label set in model output order."""
    return LabelsResponse(labels=list(_get_controller(request).labels.names))


@router.get(
    "/medicines/{name}",
    response_model=MedicineResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
    summary="Look up medicine metadata",
)
async def get_medicine(name: str, request: Request) -> MedicineResponse:
    """Return the primary indication for a generic medicine name."""
    info = _get_controller(request).catalog.get(name)
    if info is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown medicine: {name}")
    return MedicineResponse(name=info.name, indication=info.indication)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    controller = _get_controller(request)
    snapshot = controller.snapshot()
    pool = controller.pool
    last = pool.last_duration
    return HealthResponse(
        status="ok" if snapshot.model_ready and snapshot.camera_ready else "degraded",
        gpu=settings.device == "cuda",
        model_ready=snapshot.model_ready,
        camera_ready=snapshot.camera_ready,
        phase=str(snapshot.phase),
        active_inferences=pool.active_count,
        completed_inferences=pool.completed,
        skipped_ticks=controller.loop.skipped_ticks,
        last_inference_ms=last * 1000 if last is not None else None,
    )
