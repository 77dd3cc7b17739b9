"""Terminal outputs: best-effort selection and the overall refinement result."""

from enum import Enum

from pydantic import BaseModel

from models.schemas.content import LessonContent
from models.schemas.execution import RestartSignal
from models.schemas.iteration import RunState, StopReason
from models.schemas.plan import RefinementPlan
from models.schemas.verdict import Issue


class QualityStatus(str, Enum):
    GOOD = "good"
    ACCEPTABLE = "acceptable"
    BELOW_STANDARD = "below_standard"


class RefinementStatus(str, Enum):
    ACCEPTED = "accepted"
    ACCEPTED_WARNING = "accepted_warning"
    BEST_EFFORT = "best_effort"
    ESCALATED = "escalated"


class BestEffortResult(BaseModel):
    content: LessonContent
    best_score: float
    best_iteration: int
    quality_status: QualityStatus
    unresolved_issues: list[Issue] = []
    improvement_hints: list[str] = []
    selection_reason: str = ""
    final_status: RefinementStatus


class RefinementResult(BaseModel):
    lesson_id: str
    status: RefinementStatus
    content: LessonContent
    final_score: float = 0.0
    iterations: int = 0
    stop_reason: StopReason | None = None
    run_state: RunState = RunState.PENDING
    requires_human_review: bool = False
    tokens_used: int = 0
    duration_ms: int = 0
    score_history: list[float] = []
    plan: RefinementPlan | None = None  # last plan executed
    best_effort: BestEffortResult | None = None
    unresolved_issues: list[Issue] = []
    restart_signals: list[RestartSignal] = []
    escalation_reason: str | None = None
