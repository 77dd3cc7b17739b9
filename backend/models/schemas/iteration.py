"""Iteration Controller state, quality locks, and stop decisions."""

from enum import Enum

from pydantic import BaseModel

from models.schemas.content import LessonContent
from models.schemas.verdict import Criterion, Issue


class StopReason(str, Enum):
    CONTINUE = "continue_more_tasks"
    CONVERGED = "stop_converged"
    MAX_ITERATIONS = "stop_max_iterations"
    TOKEN_BUDGET = "stop_token_budget"
    TIMEOUT = "stop_timeout"
    ALL_SECTIONS_LOCKED = "stop_all_sections_locked"
    SCORE_MET = "stop_score_threshold_met"


class RunState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    CONVERGED = "CONVERGED"
    MAX_ITERATIONS = "MAX_ITERATIONS"
    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    TIMEOUT = "TIMEOUT"
    ALL_LOCKED = "ALL_LOCKED"
    SCORE_MET = "SCORE_MET"


STOP_REASON_STATES: dict[StopReason, RunState] = {
    StopReason.CONTINUE: RunState.RUNNING,
    StopReason.CONVERGED: RunState.CONVERGED,
    StopReason.MAX_ITERATIONS: RunState.MAX_ITERATIONS,
    StopReason.TOKEN_BUDGET: RunState.BUDGET_EXCEEDED,
    StopReason.TIMEOUT: RunState.TIMEOUT,
    StopReason.ALL_SECTIONS_LOCKED: RunState.ALL_LOCKED,
    StopReason.SCORE_MET: RunState.SCORE_MET,
}


class LockReason(str, Enum):
    REGRESSION = "regression"
    MAX_EDITS = "max_edits"
    OSCILLATION = "oscillation"


class QualityLockViolation(BaseModel):
    criterion: Criterion
    locked_score: float
    new_score: float
    delta: float
    section_id: str


class QualityLockCheck(BaseModel):
    passed: bool
    violations: list[QualityLockViolation] = []
    current_locks: dict[Criterion, float] = {}


class IterationResult(BaseModel):
    """Snapshot of the lesson after an iteration (iteration 0 is the input)."""
    iteration: int
    content: LessonContent
    score: float
    criteria_scores: dict[Criterion, float] = {}
    issues: list[Issue] = []  # issues still reported for this snapshot
    tokens_used: int = 0


class IterationState(BaseModel):
    iteration: int = 0
    score_history: list[float] = []
    content_history: list[IterationResult] = []
    locked_sections: set[str] = set()
    lock_reasons: dict[str, LockReason] = {}
    section_edit_count: dict[str, int] = {}
    section_score_history: dict[str, list[float]] = {}
    quality_locks: dict[Criterion, float] = {}
    tokens_used: int = 0
    start_time: float = 0.0  # time.monotonic() seconds

    @property
    def current_score(self) -> float:
        return self.score_history[-1] if self.score_history else 0.0


class ControllerDecision(BaseModel):
    should_continue: bool
    reason: StopReason
    run_state: RunState
    newly_locked_sections: list[str] = []
    remaining_task_count: int = 0
