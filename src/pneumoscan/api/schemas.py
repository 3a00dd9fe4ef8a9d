"""Pydantic request/response schemas for the PneumoScan inference service.

The remote backend parses service responses with the same models, so the
wire format is defined once.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from pneumoscan.ml.types import AnalysisResult


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    model_loaded: bool = Field(description="Whether the classifier session is in memory")


class Probabilities(BaseModel):
    """Per-class percentages formatted with two decimals, e.g. ``"90.00"``."""

    normal: str
    pneumonia: str


class PredictionResult(BaseModel):
    """Classification outcome for a single uploaded image."""

    has_pneumonia: bool
    confidence: float = Field(ge=0.0, le=100.0, description="Confidence in the decision (0-100)")
    probabilities: Probabilities

    @classmethod
    def from_analysis(cls, result: AnalysisResult) -> PredictionResult:
        return cls(
            has_pneumonia=result.has_pneumonia,
            confidence=result.confidence,
            probabilities=Probabilities(
                normal=f"{result.probabilities.normal:.2f}",
                pneumonia=f"{result.probabilities.pneumonia:.2f}",
            ),
        )


class UploadResponse(BaseModel):
    """Response for the upload endpoint, successful or not."""

    success: bool
    result: PredictionResult | None = None
    error: str | None = None
