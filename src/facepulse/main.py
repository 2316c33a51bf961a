"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facepulse.api.routes import router
from facepulse.config import configure_logging, get_settings
from facepulse.ml.capabilities import CapabilityLoader, DetectionProfile
from facepulse.ml.inference import InferencePool
from facepulse.ml.model_manager import OnnxModelManager
from facepulse.ml.pipeline import FaceAnalyzer

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load capabilities on startup, clean up on shutdown.

    A CapabilityLoadError propagates out of startup, so the server never
    accepts requests without a detector.
    """
    settings = get_settings()
    app.state.settings = settings
    configure_logging(settings.log_level)

    logger.info(
        "Starting FacePulse (device=%s, max_concurrent=%s, models_dir=%s, models_repo=%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.models_repo,
    )

    model_manager = OnnxModelManager(settings)
    capabilities = CapabilityLoader(model_manager, settings).load(
        DetectionProfile.SINGLE_SHOT, with_expressions=False
    )
    if not capabilities.has_landmarks:
        logger.warning("Landmark model not loaded; /api/recognize will fail until it is available")

    app.state.model_manager = model_manager
    app.state.analyzer = FaceAnalyzer(capabilities)
    inference_pool = InferencePool.from_settings(settings)
    app.state.inference_pool = inference_pool

    logger.info("FacePulse ready")
    yield

    logger.info("Shutting down FacePulse")
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FacePulse shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FacePulse",
        description="Single-image face detection with normalized geometry",
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


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    settings = get_settings()
    uvicorn.run("facepulse.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())
