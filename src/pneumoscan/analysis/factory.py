"""Assemble a controller for the backend chosen in configuration."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pneumoscan.analysis.controller import AnalysisController
from pneumoscan.analysis.pipeline import AnalysisPipeline
from pneumoscan.ml.backends import LocalModelBackend, RemoteServiceBackend
from pneumoscan.ml.inference import InferencePool
from pneumoscan.ml.model_manager import OnnxModelManager
from pneumoscan.ml.preprocessing import TensorEncoder
from pneumoscan.ml.validation import ImageValidator

if TYPE_CHECKING:
    from pneumoscan.config import Settings
    from pneumoscan.ml.backends import InferenceBackend

logger = logging.getLogger(__name__)


def build_backend(settings: Settings) -> InferenceBackend:
    if settings.backend == "remote":
        logger.info("Using remote inference service at %s", settings.remote_url)
        return RemoteServiceBackend(settings.remote_url, timeout=settings.remote_timeout)

    logger.info("Using local classifier %s/%s", settings.models_dir, settings.model_filename)
    return LocalModelBackend(OnnxModelManager(settings), InferencePool(settings))


def build_encoder(settings: Settings) -> TensorEncoder:
    return TensorEncoder(
        target_size=(settings.image_size, settings.image_size),
        max_image_pixels=settings.max_image_pixels,
    )


def build_controller(settings: Settings, backend: InferenceBackend | None = None) -> AnalysisController:
    pipeline = AnalysisPipeline(build_encoder(settings), backend or build_backend(settings))
    return AnalysisController(ImageValidator(settings.max_file_size), pipeline)
