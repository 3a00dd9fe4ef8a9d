"""FastAPI application entry point for the PneumoScan inference service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from pneumoscan.analysis.factory import build_encoder
from pneumoscan.analysis.pipeline import AnalysisPipeline
from pneumoscan.api.routes import router
from pneumoscan.config import LOG_FORMAT, get_settings
from pneumoscan.ml.backends import LocalModelBackend
from pneumoscan.ml.inference import InferencePool
from pneumoscan.ml.model_manager import OnnxModelManager
from pneumoscan.ml.validation import ImageValidator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: load the classifier on startup, release it on shutdown."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)

    logger.info(
        "Starting PneumoScan (device=%s, max_concurrent=%s, model=%s/%s)",
        settings.device,
        settings.max_concurrent,
        settings.models_dir,
        settings.model_filename,
    )

    backend = LocalModelBackend(OnnxModelManager(settings), InferencePool(settings))
    app.state.validator = ImageValidator(settings.max_file_size)
    app.state.pipeline = AnalysisPipeline(build_encoder(settings), backend, offload_encoding=True)

    try:
        await backend.load()
    except Exception:
        # Keep serving: /health reports model_loaded=false and /upload answers 503.
        logger.exception("Classifier failed to load")
    else:
        logger.info("PneumoScan ready")

    yield

    logger.info("Shutting down PneumoScan")
    await backend.close()
    logger.info("PneumoScan shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="PneumoScan",
        description="Chest X-ray pneumonia classification service",
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
