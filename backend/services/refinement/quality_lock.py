"""Quality-Lock Manager: vetoes regressions and locks over-edited sections.

Criterion locks start from the criteria that already pass and only ever
move up. A section is locked for one of three reasons:
    regression   a committed edit would push a locked criterion below lock - tolerance
    oscillation  its score swung both ways across two edits with no net gain
    max_edits    its edit count reached section_lock_after_edits
"""

import logging

from models.schemas.iteration import IterationState, LockReason, QualityLockCheck, QualityLockViolation
from models.schemas.refinement_config import RefinementConfig
from models.schemas.verdict import Criterion

logger = logging.getLogger(__name__)

LOCK_THRESHOLD = 0.75


def initialize_quality_locks(scores: dict[Criterion, float], threshold: float = LOCK_THRESHOLD) -> dict[Criterion, float]:
    return {criterion: score for criterion, score in scores.items() if score >= threshold}


def check_quality_locks(
    locks: dict[Criterion, float],
    scores: dict[Criterion, float],
    section_id: str,
    tolerance: float = 0.05,
) -> QualityLockCheck:
    violations = []
    for criterion, locked in locks.items():
        if criterion not in scores:
            continue
        new = scores[criterion]
        if new < locked - tolerance:
            violations.append(QualityLockViolation(
                criterion=criterion,
                locked_score=locked,
                new_score=new,
                delta=new - locked,
                section_id=section_id,
            ))
    return QualityLockCheck(passed=not violations, violations=violations, current_locks=dict(locks))


def raise_quality_locks(
    locks: dict[Criterion, float],
    scores: dict[Criterion, float],
    threshold: float = LOCK_THRESHOLD,
) -> dict[Criterion, float]:
    """Lock newly passing criteria and raise existing locks; never lowers a lock."""
    updated = dict(locks)
    for criterion, score in scores.items():
        if criterion in updated:
            updated[criterion] = max(updated[criterion], score)
        elif score >= threshold:
            updated[criterion] = score
    return updated


def detect_oscillation(scores: list[float], threshold: float) -> bool:
    """Last two moves exceed the threshold in opposite directions without net gain."""
    if len(scores) < 3:
        return False
    a, b, c = scores[-3:]
    first, second = b - a, c - b
    swung = abs(first) > threshold and abs(second) > threshold and (first > 0) != (second > 0)
    return swung and c - a <= threshold


class QualityLockManager:
    """Applies lock rules to the iteration state on behalf of the controller."""

    def __init__(self, config: RefinementConfig) -> None:
        self.config = config

    def initialize(self, state: IterationState, scores: dict[Criterion, float]) -> None:
        state.quality_locks = initialize_quality_locks(scores)
        logger.info("Quality locks initialized: %s", {c.value: round(s, 3) for c, s in state.quality_locks.items()})

    def review_edit(self, state: IterationState, section_id: str, scores: dict[Criterion, float]) -> QualityLockCheck:
        check = check_quality_locks(state.quality_locks, scores, section_id, self.config.regression_tolerance)
        if not check.passed:
            for v in check.violations:
                logger.warning(
                    "Quality lock violation in %s: %s %.3f -> %.3f",
                    section_id, v.criterion.value, v.locked_score, v.new_score,
                )
        return check

    def lock_section(self, state: IterationState, section_id: str, reason: LockReason) -> bool:
        """Returns False if the section was already locked."""
        if section_id in state.locked_sections:
            return False
        state.locked_sections.add(section_id)
        state.lock_reasons[section_id] = reason
        logger.info("Section %s locked (%s)", section_id, reason.value)
        return True

    def record_edit(self, state: IterationState, section_id: str, section_score: float | None) -> LockReason | None:
        """Count a committed edit; returns the lock reason if the section must now be locked."""
        state.section_edit_count[section_id] = state.section_edit_count.get(section_id, 0) + 1
        if section_score is not None:
            history = state.section_score_history.setdefault(section_id, [state.current_score])
            history.append(section_score)
            if detect_oscillation(history, self.config.convergence_threshold):
                return LockReason.OSCILLATION
        if state.section_edit_count[section_id] >= self.config.section_lock_after_edits:
            return LockReason.MAX_EDITS
        return None

    def raise_locks(self, state: IterationState, scores: dict[Criterion, float]) -> None:
        state.quality_locks = raise_quality_locks(state.quality_locks, scores)
