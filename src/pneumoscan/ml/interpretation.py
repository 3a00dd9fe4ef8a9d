"""Map a raw pneumonia probability to a decision and display percentages."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from pneumoscan.ml.types import AnalysisResult, Decision, ProbabilityBreakdown

DECISION_THRESHOLD = Decimal("0.5")

_HUNDRED = Decimal(100)
_WHOLE = Decimal(1)
_CENTS = Decimal("0.01")


def interpret(score: float) -> AnalysisResult:
    """Interpret a score in ``[0, 1]``; exactly 0.5 resolves to normal.

    Arithmetic runs on the score's shortest decimal repr, so ``0.9`` yields a
    confidence of 90 rather than a float artefact like 89.99999999999999.
    """
    value = Decimal(repr(float(score)))
    decision = Decision.PNEUMONIA if value > DECISION_THRESHOLD else Decision.NORMAL

    confidence = (max(value, _WHOLE - value) * _HUNDRED).quantize(_WHOLE, rounding=ROUND_HALF_UP)
    pneumonia = (value * _HUNDRED).quantize(_CENTS, rounding=ROUND_HALF_UP)
    normal = _HUNDRED - pneumonia

    return AnalysisResult(
        decision=decision,
        confidence=int(confidence),
        probabilities=ProbabilityBreakdown(normal=float(normal), pneumonia=float(pneumonia)),
        score=float(score),
    )


class ResultInterpreter:
    """Object form of :func:`interpret` for injection into the pipeline."""

    def interpret(self, score: float) -> AnalysisResult:
        return interpret(score)
