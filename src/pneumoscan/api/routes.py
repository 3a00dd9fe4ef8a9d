"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, UploadFile, status
from fastapi.responses import JSONResponse

from pneumoscan.api.schemas import HealthResponse, PredictionResult, UploadResponse
from pneumoscan.errors import (
    EncodingFailure,
    InferenceFailure,
    NotReady,
    PneumoScanError,
    RejectionReason,
    ValidationError,
)
from pneumoscan.ml.types import ImageSource

if TYPE_CHECKING:
    from pneumoscan.analysis.pipeline import AnalysisPipeline
    from pneumoscan.ml.validation import ImageValidator

logger = logging.getLogger(__name__)

router = APIRouter()

_REJECTION_STATUS = {
    RejectionReason.INVALID_TYPE: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
    RejectionReason.TOO_LARGE: status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
}


def _get_pipeline(request: Request) -> AnalysisPipeline:
    pipeline: AnalysisPipeline = request.app.state.pipeline
    return pipeline


def _get_validator(request: Request) -> ImageValidator:
    validator: ImageValidator = request.app.state.validator
    return validator


def _failure(status_code: int, message: str) -> JSONResponse:
    body = UploadResponse(success=False, error=message)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


def _status_for(exc: PneumoScanError) -> int:
    if isinstance(exc, ValidationError):
        return _REJECTION_STATUS[exc.reason]
    if isinstance(exc, EncodingFailure):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NotReady):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    if isinstance(exc, InferenceFailure) and isinstance(exc.__cause__, TimeoutError):
        # Inference queue full
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health and classifier readiness."""
    pipeline = _get_pipeline(request)
    return HealthResponse(status="ok", model_loaded=pipeline.is_ready)


@router.post(
    "/upload",
    response_model=UploadResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": UploadResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": UploadResponse},
        status.HTTP_415_UNSUPPORTED_MEDIA_TYPE: {"model": UploadResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": UploadResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": UploadResponse},
    },
    summary="Classify a chest X-ray",
)
async def upload(request: Request, file: UploadFile | None = None) -> JSONResponse:
    """Classify an uploaded chest X-ray as normal or pneumonia."""
    if file is None or not file.filename:
        return _failure(status.HTTP_400_BAD_REQUEST, "No file uploaded")

    validator = _get_validator(request)
    pipeline = _get_pipeline(request)

    # The declared size is not trusted; read at most one byte past the limit.
    data = await file.read(validator.max_file_size + 1)
    if not data:
        return _failure(status.HTTP_400_BAD_REQUEST, "Uploaded file is empty")

    source = ImageSource(data=data, media_type=file.content_type, filename=file.filename)
    try:
        validator.check(source)
        result = await pipeline.run(source)
    except PneumoScanError as exc:
        logger.info("Upload %s failed: %s (%s)", file.filename, exc.message, exc.kind)
        return _failure(_status_for(exc), exc.message)

    body = UploadResponse(success=True, result=PredictionResult.from_analysis(result))
    return JSONResponse(status_code=status.HTTP_200_OK, content=body.model_dump(exclude_none=True))
