"""Best-Effort Selector: picks the strongest snapshot when a run stops short of the target."""

import logging

from models.schemas.best_effort import BestEffortResult, QualityStatus, RefinementStatus
from models.schemas.iteration import IterationResult
from models.schemas.refinement_config import RefinementConfig
from models.schemas.verdict import Issue, SEVERITY_RANK

logger = logging.getLogger(__name__)

MAX_HINTS = 5


def select_best_iteration(history: list[IterationResult]) -> IterationResult:
    """Highest score wins; the earliest snapshot wins ties."""
    if not history:
        raise ValueError("iteration history is empty")
    best = history[0]
    for result in history[1:]:
        if result.score > best.score:
            best = result
    return best


def determine_quality_status(score: float, config: RefinementConfig) -> QualityStatus:
    if score >= config.accept_threshold:
        return QualityStatus.GOOD
    if score >= config.good_enough_threshold:
        return QualityStatus.ACCEPTABLE
    return QualityStatus.BELOW_STANDARD


def generate_improvement_hints(issues: list[Issue], max_hints: int = MAX_HINTS) -> list[str]:
    ranked = sorted(issues, key=lambda i: SEVERITY_RANK[i.severity])
    hints = []
    for issue in ranked:
        criterion = issue.criterion.value.replace("_", " ")
        hint = f"Improve {criterion}: {issue.suggested_fix or issue.description}"
        if hint not in hints:
            hints.append(hint)
        if len(hints) >= max_hints:
            break
    return hints


def _final_status(quality: QualityStatus, config: RefinementConfig) -> RefinementStatus:
    if quality == QualityStatus.GOOD:
        return RefinementStatus.ACCEPTED
    if quality == QualityStatus.ACCEPTABLE:
        return RefinementStatus.ACCEPTED_WARNING
    if config.escalation_enabled:
        return RefinementStatus.ESCALATED
    return RefinementStatus.BEST_EFFORT


def create_best_effort_result(
    history: list[IterationResult],
    config: RefinementConfig,
    unresolved_issues: list[Issue] | None = None,
) -> BestEffortResult:
    """Select the best snapshot and derive its quality status and hints.

    Hints come from the selected snapshot's remaining issues. Issues the
    executors could not fix belong to the latest iteration, so they only count
    when the latest snapshot is the one selected.
    """
    best = select_best_iteration(history)
    quality = determine_quality_status(best.score, config)
    latest = history[-1]
    issues = list(best.issues)

    if best is latest:
        issues.extend(unresolved_issues or [])
        reason = f"Latest iteration {best.iteration} has the highest score ({best.score:.3f})"
    else:
        reason = (
            f"Iteration {best.iteration} scored {best.score:.3f}, "
            f"higher than the final iteration {latest.iteration} ({latest.score:.3f})"
        )

    result = BestEffortResult(
        content=best.content,
        best_score=best.score,
        best_iteration=best.iteration,
        quality_status=quality,
        unresolved_issues=issues,
        improvement_hints=generate_improvement_hints(issues),
        selection_reason=reason,
        final_status=_final_status(quality, config),
    )
    logger.info(
        "Best-effort selection: iteration=%d score=%.3f quality=%s status=%s",
        result.best_iteration, result.best_score, quality.value, result.final_status.value,
    )
    return result
