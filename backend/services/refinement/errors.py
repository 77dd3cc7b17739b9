"""Exceptions raised by the refinement engine.

Only malformed input escapes a run; the rest are absorbed into results.
"""


class RefinementError(Exception):
    """Base class for refinement engine errors."""


class EvaluatorUnavailable(RefinementError):
    """An evaluator could not produce a verdict (API error, empty or unparsable reply)."""

    def __init__(self, evaluator_id: str, reason: str = "") -> None:
        self.evaluator_id = evaluator_id
        self.reason = reason
        super().__init__(f"Evaluator {evaluator_id} unavailable: {reason}" if reason else f"Evaluator {evaluator_id} unavailable")


class RubricWeightError(RefinementError, ValueError):
    """Rubric criterion weights do not sum to 1.0."""
