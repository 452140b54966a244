"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from rxreader.api.routes import router
from rxreader.config import get_settings
from rxreader.recognition.controller import RecognitionController

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: start recognition on startup, tear it down on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting RxReader (device=%s, model=%s, interval=%sms, threshold=%.2f, facing=%s)",
        settings.device,
        settings.model_repo_id or settings.model_path,
        settings.poll_interval_ms,
        settings.confidence_threshold,
        settings.initial_facing,
    )

    controller = RecognitionController.from_settings(settings)
    app.state.controller = controller
    await controller.startup()

    logger.info("RxReader ready")
    yield

    logger.info("Shutting down RxReader")
    await controller.shutdown()
    logger.info("RxReader shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="RxReader",
        description="Live camera recognition of medicine packages",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
