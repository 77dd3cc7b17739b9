"""Iteration Controller: owns IterationState and makes the stop/continue call.

State machine:
    PENDING → RUNNING → {CONVERGED, MAX_ITERATIONS, BUDGET_EXCEEDED,
                         TIMEOUT, ALL_LOCKED, SCORE_MET}

Check order after each iteration:
    score >= accept → iteration >= max → tokens >= max → elapsed >= timeout
    → converged → all sections locked → continue
Workers never touch the state; their TaskOutcome slots are merged here
between batches.
"""

import logging
import time
from typing import Callable

from pydantic import BaseModel

from models.schemas.content import LessonContent
from models.schemas.execution import RestartSignal, TaskOutcome, TaskStatus
from models.schemas.iteration import (
    STOP_REASON_STATES,
    ControllerDecision,
    IterationResult,
    IterationState,
    LockReason,
    QualityLockViolation,
    RunState,
    StopReason,
)
from models.schemas.plan import TargetedIssue
from models.schemas.refinement_config import RefinementConfig
from services.refinement.quality_lock import QualityLockManager

logger = logging.getLogger(__name__)

MIN_CONVERGENCE_HISTORY = 3


def detect_convergence(score_history: list[float], threshold: float) -> bool:
    """The latest iteration improved the score by less than the threshold.

    Needs the initial score plus two refined ones; a drop counts as no improvement.
    """
    if len(score_history) < MIN_CONVERGENCE_HISTORY:
        return False
    return score_history[-1] - score_history[-2] < threshold


def update_section_locks(section_edit_count: dict[str, int], max_edits: int) -> list[str]:
    """Sections whose edit count reached the limit."""
    return [section_id for section_id, count in section_edit_count.items() if count >= max_edits]


def elapsed_ms(state: IterationState, now: float | None = None) -> int:
    now = time.monotonic() if now is None else now
    return int((now - state.start_time) * 1000)


def check_limits(state: IterationState, config: RefinementConfig, now: float | None = None) -> StopReason | None:
    """Budget and timeout only; used between batches."""
    if state.tokens_used >= config.max_tokens:
        return StopReason.TOKEN_BUDGET
    if elapsed_ms(state, now) >= config.timeout_ms:
        return StopReason.TIMEOUT
    return None


def should_continue_iteration(
    state: IterationState,
    config: RefinementConfig,
    section_ids: list[str],
    remaining_task_count: int,
    now: float | None = None,
) -> ControllerDecision:
    newly_locked = [
        s for s in update_section_locks(state.section_edit_count, config.section_lock_after_edits)
        if s not in state.locked_sections
    ]
    locked = state.locked_sections | set(newly_locked)

    if state.score_history and state.current_score >= config.accept_threshold:
        reason = StopReason.SCORE_MET
    elif state.iteration >= config.max_iterations:
        reason = StopReason.MAX_ITERATIONS
    elif (limit := check_limits(state, config, now)) is not None:
        reason = limit
    elif detect_convergence(state.score_history, config.convergence_threshold):
        reason = StopReason.CONVERGED
    elif section_ids and all(s in locked for s in section_ids):
        reason = StopReason.ALL_SECTIONS_LOCKED
    elif remaining_task_count == 0:
        # Nothing actionable is left, so the score cannot move any further
        reason = StopReason.CONVERGED
    else:
        reason = StopReason.CONTINUE

    return ControllerDecision(
        should_continue=reason == StopReason.CONTINUE,
        reason=reason,
        run_state=STOP_REASON_STATES[reason],
        newly_locked_sections=newly_locked,
        remaining_task_count=remaining_task_count,
    )


class BatchMergeReport(BaseModel):
    applied: list[str] = []
    rolled_back: list[str] = []
    abandoned: list[str] = []
    violations: dict[str, list[QualityLockViolation]] = {}
    newly_locked: dict[str, LockReason] = {}
    edit_counts: dict[str, int] = {}
    section_scores: dict[str, float | None] = {}
    unresolved_issues: list[TargetedIssue] = []
    restart_signals: list[RestartSignal] = []
    tokens_used: int = 0


class IterationController:
    """Single writer of IterationState for one refinement run."""

    def __init__(
        self,
        config: RefinementConfig,
        content: LessonContent,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.content = content
        self.section_ids = content.section_ids
        self.clock = clock
        self.locks = QualityLockManager(config)
        self.state = IterationState(start_time=clock())
        self.run_state = RunState.PENDING

    def start(self, initial: IterationResult) -> None:
        """Record iteration 0 and lock the criteria that already pass."""
        self.state.tokens_used += initial.tokens_used
        self.state.score_history.append(initial.score)
        self.state.content_history.append(initial)
        self.locks.initialize(self.state, initial.criteria_scores)
        self.run_state = RunState.RUNNING

    def begin_iteration(self) -> int:
        self.state.iteration += 1
        return self.state.iteration

    @property
    def remaining_budget(self) -> int:
        return max(0, self.config.max_tokens - self.state.tokens_used)

    def elapsed_ms(self) -> int:
        return elapsed_ms(self.state, self.clock())

    def remaining_time_s(self) -> float:
        return max(0.0, (self.config.timeout_ms - self.elapsed_ms()) / 1000)

    def add_tokens(self, tokens: int) -> None:
        self.state.tokens_used += tokens

    def limits_exceeded(self) -> StopReason | None:
        return check_limits(self.state, self.config, self.clock())

    def merge_batch(self, outcomes: list[TaskOutcome]) -> BatchMergeReport:
        """Commit verified edits that respect the quality locks; roll back the rest."""
        report = BatchMergeReport()
        for outcome in outcomes:
            section_id = outcome.section_id
            self.state.tokens_used += outcome.tokens_used
            report.tokens_used += outcome.tokens_used

            if outcome.restart_signal is not None:
                report.restart_signals.append(outcome.restart_signal)

            if outcome.status != TaskStatus.VERIFIED or outcome.new_content is None:
                report.abandoned.append(section_id)
                report.unresolved_issues.extend(outcome.unresolved_issues)
                continue

            if section_id in self.state.locked_sections:
                # Locked by an earlier outcome of this batch
                report.rolled_back.append(section_id)
                report.unresolved_issues.extend(outcome.unresolved_issues)
                continue

            check = self.locks.review_edit(self.state, section_id, outcome.criteria_scores)
            if not check.passed:
                report.rolled_back.append(section_id)
                report.violations[section_id] = check.violations
                report.unresolved_issues.extend(outcome.unresolved_issues)
                if self.locks.lock_section(self.state, section_id, LockReason.REGRESSION):
                    report.newly_locked[section_id] = LockReason.REGRESSION
                continue

            self.content = self.content.with_section(section_id, outcome.new_content)
            report.applied.append(section_id)
            report.section_scores[section_id] = outcome.section_score
            lock_reason = self.locks.record_edit(self.state, section_id, outcome.section_score)
            report.edit_counts[section_id] = self.state.section_edit_count[section_id]
            if lock_reason is not None and self.locks.lock_section(self.state, section_id, lock_reason):
                report.newly_locked[section_id] = lock_reason

        logger.info(
            "Batch merged: applied=%s rolled_back=%s abandoned=%s tokens=%d",
            report.applied, report.rolled_back, report.abandoned, report.tokens_used,
        )
        return report

    def record_iteration(self, result: IterationResult) -> float:
        """Append the re-evaluated snapshot; returns the score change."""
        previous = self.state.current_score
        self.state.tokens_used += result.tokens_used
        self.state.score_history.append(result.score)
        self.state.content_history.append(result)
        self.locks.raise_locks(self.state, result.criteria_scores)
        return result.score - previous

    def decide(self, remaining_task_count: int) -> ControllerDecision:
        decision = should_continue_iteration(
            self.state, self.config, self.section_ids, remaining_task_count, self.clock()
        )
        for section_id in decision.newly_locked_sections:
            self.locks.lock_section(self.state, section_id, LockReason.MAX_EDITS)
        self.run_state = decision.run_state
        logger.info(
            "Iteration %d decision: %s (score=%.3f, tokens=%d, locked=%d/%d)",
            self.state.iteration, decision.reason.value, self.state.current_score,
            self.state.tokens_used, len(self.state.locked_sections), len(self.section_ids),
        )
        return decision

    def stop(self, reason: StopReason) -> ControllerDecision:
        """Forced stop (limits hit mid-iteration)."""
        self.run_state = STOP_REASON_STATES[reason]
        return ControllerDecision(should_continue=False, reason=reason, run_state=self.run_state)
