"""Value types passed between the validator, encoder, backends and controller."""

from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from types import TracebackType

    import numpy as np
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImageSource:
    """A user-selected file: raw bytes plus the metadata it was declared with."""

    data: bytes = field(repr=False)
    media_type: str | None
    filename: str = "image"
    size: int = -1

    def __post_init__(self) -> None:
        if self.size < 0:
            object.__setattr__(self, "size", len(self.data))

    @classmethod
    def from_path(cls, path: str | Path) -> ImageSource:
        """Read a file from disk, guessing its media type from the extension."""
        path = Path(path)
        media_type, _ = mimetypes.guess_type(path.name)
        return cls(data=path.read_bytes(), media_type=media_type, filename=path.name)


class Tensor:
    """Encoded classifier input with an explicit, single release.

    Use as a context manager so the buffer is freed on every exit path::

        with encoder.encode(source) as tensor:
            score = await backend.predict(tensor, source)
    """

    def __init__(self, array: NDArray[np.float32]) -> None:
        self._array: NDArray[np.float32] | None = array
        self._shape: tuple[int, ...] = tuple(array.shape)

    @property
    def shape(self) -> tuple[int, ...]:
        return self._shape

    @property
    def released(self) -> bool:
        return self._array is None

    @property
    def array(self) -> NDArray[np.float32]:
        if self._array is None:
            raise RuntimeError("Tensor buffer has already been released")
        return self._array

    def release(self) -> None:
        """Drop the underlying buffer. Releasing twice is a programming error."""
        if self._array is None:
            raise RuntimeError("Tensor buffer released twice")
        self._array = None
        logger.debug("Released tensor buffer %s", self._shape)

    def __enter__(self) -> Tensor:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()


class Decision(StrEnum):
    NORMAL = "normal"
    PNEUMONIA = "pneumonia"


@dataclass(frozen=True)
class ProbabilityBreakdown:
    """Per-class probabilities as percentages with two decimals."""

    normal: float
    pneumonia: float


@dataclass(frozen=True)
class AnalysisResult:
    decision: Decision
    confidence: int
    probabilities: ProbabilityBreakdown
    score: float

    @property
    def has_pneumonia(self) -> bool:
        return self.decision is Decision.PNEUMONIA
