"""Analysis controller: the single owner of the analysis state machine.

States::

    IDLE --select--> IMAGE_LOADED --analyze--> ANALYZING --+--> RESULT
      ^                  ^                                  +--> ERROR
      +------clear-------+------------select / clear------------+

Only one analysis is in flight at a time. Selecting an image (even the one
being analyzed) or clearing while an analysis is running supersedes it; its
outcome is dropped when it arrives.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from pneumoscan.errors import NotReady, PneumoScanError, UnexpectedFailure

if TYPE_CHECKING:
    from collections.abc import Callable

    from pneumoscan.analysis.pipeline import AnalysisPipeline
    from pneumoscan.ml.types import AnalysisResult, ImageSource
    from pneumoscan.ml.validation import ImageValidator, ValidationResult

logger = logging.getLogger(__name__)


class Phase(StrEnum):
    IDLE = "idle"
    IMAGE_LOADED = "image_loaded"
    ANALYZING = "analyzing"
    RESULT = "result"
    ERROR = "error"


@dataclass(frozen=True)
class AnalysisState:
    phase: Phase
    source: ImageSource | None = None
    result: AnalysisResult | None = None
    error: str | None = None
    failure: str | None = None


IDLE = AnalysisState(Phase.IDLE)

_ANALYZABLE = frozenset({Phase.IMAGE_LOADED, Phase.ERROR})


class EventKind(StrEnum):
    STATE_CHANGED = "state_changed"
    VALIDATION_FAILED = "validation_failed"
    NOT_READY = "not_ready"


@dataclass(frozen=True)
class ControllerEvent:
    kind: EventKind
    state: AnalysisState
    message: str | None = None


class AnalysisController:
    """Drives image selection and analysis for one session.

    Listeners are called synchronously for every transition and for advisory
    events (validation rejections, model not ready).
    """

    def __init__(self, validator: ImageValidator, pipeline: AnalysisPipeline) -> None:
        self._validator = validator
        self._pipeline = pipeline
        self._state = IDLE
        self._generation = 0
        self._listeners: list[Callable[[ControllerEvent], None]] = []

    @property
    def state(self) -> AnalysisState:
        return self._state

    @property
    def can_analyze(self) -> bool:
        """Whether the analyze control should be enabled."""
        return self._state.phase in _ANALYZABLE and self._state.source is not None

    def subscribe(self, listener: Callable[[ControllerEvent], None]) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def select_image(self, source: ImageSource) -> ValidationResult:
        """Validate and load ``source``. Invalid files leave the state untouched."""
        outcome = self._validator.validate(source)
        if not outcome.ok:
            logger.info("Rejected %s: %s", source.filename, outcome.reason)
            self._emit(EventKind.VALIDATION_FAILED, outcome.message)
            return outcome

        self._supersede()
        self._transition(AnalysisState(Phase.IMAGE_LOADED, source=source))
        return outcome

    def clear(self) -> None:
        """Discard the loaded image and any result or error."""
        self._supersede()
        self._transition(IDLE)

    async def analyze(self) -> AnalysisState:
        """Run the pipeline on the loaded image and return the resulting state.

        A request made while nothing is loaded, while an analysis is already
        running, or after a result is shown does nothing. A request made before
        the model is ready emits ``NOT_READY`` and leaves the state unchanged.
        """
        current = self._state
        if not self.can_analyze or current.source is None:
            logger.debug("Ignoring analyze request in phase %s", current.phase)
            return current

        if not self._pipeline.is_ready:
            self._emit(EventKind.NOT_READY, NotReady().message)
            return current

        source = current.source
        generation = self._generation
        self._transition(AnalysisState(Phase.ANALYZING, source=source))

        try:
            result = await self._pipeline.run(source)
        except asyncio.CancelledError:
            if generation == self._generation:
                self._transition(AnalysisState(Phase.IMAGE_LOADED, source=source))
            raise
        except PneumoScanError as exc:
            outcome = AnalysisState(Phase.ERROR, source=source, error=exc.message, failure=exc.kind)
        except Exception:
            logger.exception("Unexpected failure while analyzing %s", source.filename)
            failure = UnexpectedFailure()
            outcome = AnalysisState(Phase.ERROR, source=source, error=failure.message, failure=failure.kind)
        else:
            outcome = AnalysisState(Phase.RESULT, source=source, result=result)

        if generation != self._generation:
            logger.info("Discarding stale %s for %s", outcome.phase, source.filename)
            return self._state

        self._transition(outcome)
        return outcome

    # -- Internal -----------------------------------------------------------

    def _supersede(self) -> None:
        self._generation += 1

    def _transition(self, state: AnalysisState) -> None:
        previous = self._state
        self._state = state
        logger.debug("State %s -> %s", previous.phase, state.phase)
        self._emit(EventKind.STATE_CHANGED)

    def _emit(self, kind: EventKind, message: str | None = None) -> None:
        event = ControllerEvent(kind=kind, state=self._state, message=message)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                # State is already committed.
                logger.exception("Listener failed on %s event", kind)
