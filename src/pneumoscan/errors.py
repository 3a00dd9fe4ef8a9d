"""Failure taxonomy shared by the analysis pipeline, the service and the CLI.

Every error carries a machine-readable ``kind`` and a message that can be
shown to the user as-is.
"""

from __future__ import annotations

from enum import StrEnum


class RejectionReason(StrEnum):
    INVALID_TYPE = "invalid_type"
    TOO_LARGE = "too_large"


class PneumoScanError(Exception):
    """Base class for all expected analysis failures."""

    kind: str = "error"
    default_message: str = "Error analyzing the image. Please try again."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class ValidationError(PneumoScanError, ValueError):
    """The selected file was rejected before any decoding took place."""

    kind = "validation_error"
    default_message = "Please select a valid image file."

    def __init__(self, reason: RejectionReason, message: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class EncodingFailure(PneumoScanError, ValueError):
    kind = "encoding_failure"
    default_message = "The image could not be decoded. Please select another file."


class InferenceFailure(PneumoScanError, RuntimeError):
    """The backend could not produce a usable score."""

    kind = "inference_failure"


class NotReady(InferenceFailure):
    kind = "not_ready"
    default_message = "Model is still loading. Please wait."


class NetworkFailure(InferenceFailure):
    kind = "network_failure"
    default_message = "Network error. Please check your connection and try again."


class ServiceFailure(InferenceFailure):
    kind = "service_failure"


class UnexpectedFailure(PneumoScanError):
    kind = "unexpected_failure"
    default_message = "An unexpected error occurred. Please try again."
