"""Metadata-only checks applied to a selected file before any decoding."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from pneumoscan.errors import RejectionReason, ValidationError

if TYPE_CHECKING:
    from pneumoscan.ml.types import ImageSource

DEFAULT_MAX_FILE_SIZE: int = 16 * 1024 * 1024


@dataclass(frozen=True)
class ValidationResult:
    reason: RejectionReason | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.reason is None


class ImageValidator:
    """Accepts ``image/*`` sources no larger than ``max_file_size`` bytes."""

    def __init__(self, max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> None:
        self._max_file_size = max_file_size

    @property
    def max_file_size(self) -> int:
        return self._max_file_size

    def validate(self, source: ImageSource) -> ValidationResult:
        media_type = (source.media_type or "").strip().lower()
        if not media_type.startswith("image/") or media_type == "image/":
            return ValidationResult(
                reason=RejectionReason.INVALID_TYPE,
                message="Please select a valid image file.",
            )
        if source.size > self._max_file_size:
            return ValidationResult(
                reason=RejectionReason.TOO_LARGE,
                message=f"File size must be less than {self._format_limit()}.",
            )
        return ValidationResult()

    def check(self, source: ImageSource) -> None:
        """Like :meth:`validate`, but raise ``ValidationError`` on rejection."""
        result = self.validate(source)
        if result.reason is not None:
            raise ValidationError(result.reason, result.message)

    def _format_limit(self) -> str:
        mib = self._max_file_size / (1024 * 1024)
        if mib >= 1 and mib.is_integer():
            return f"{int(mib)}MB"
        return f"{self._max_file_size} bytes"
