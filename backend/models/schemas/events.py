"""Typed progress events, discriminated on `type`.

Each event carries enough data for a UI to rebuild the plan display
without replaying engine logic.
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field

from models.schemas.best_effort import RefinementStatus
from models.schemas.iteration import LockReason, QualityLockViolation, StopReason
from models.schemas.plan import FixAction, RefinementPlan
from models.schemas.verdict import Confidence, Issue


class _EventBase(BaseModel):
    lesson_id: str
    sequence: int = 0  # assigned by the event stream


class RefinementStartEvent(_EventBase):
    type: Literal["refinement_start"] = "refinement_start"
    mode: str
    initial_score: float
    section_ids: list[str]
    consensus_method: str


class ArbiterCompleteEvent(_EventBase):
    type: Literal["arbiter_complete"] = "arbiter_complete"
    iteration: int
    plan: RefinementPlan


class BatchStartedEvent(_EventBase):
    type: Literal["batch_started"] = "batch_started"
    iteration: int
    batch_index: int
    section_ids: list[str]


class TaskStartedEvent(_EventBase):
    type: Literal["task_started"] = "task_started"
    iteration: int
    section_id: str
    action: FixAction
    executor: str
    estimated_tokens: int
    attempt: int = 1


class PatchAppliedEvent(_EventBase):
    type: Literal["patch_applied"] = "patch_applied"
    section_id: str
    action: FixAction | None = None
    edit_count: int
    section_score: float | None = None


class VerificationResultEvent(_EventBase):
    type: Literal["verification_result"] = "verification_result"
    section_id: str
    passed: bool
    accepted: bool
    confidence: Confidence
    reasoning: str = ""
    new_issue_count: int = 0


class QualityLockTriggeredEvent(_EventBase):
    type: Literal["quality_lock_triggered"] = "quality_lock_triggered"
    section_id: str
    violations: list[QualityLockViolation]


class SectionLockedEvent(_EventBase):
    type: Literal["section_locked"] = "section_locked"
    section_id: str
    reason: LockReason


class BatchCompleteEvent(_EventBase):
    type: Literal["batch_complete"] = "batch_complete"
    iteration: int
    batch_index: int
    applied: list[str] = []
    rolled_back: list[str] = []
    abandoned: list[str] = []
    tokens_used: int = 0


class IterationCompleteEvent(_EventBase):
    type: Literal["iteration_complete"] = "iteration_complete"
    iteration: int
    score: float
    score_delta: float
    tokens_used: int
    locked_sections: list[str] = []


class EscalationTriggeredEvent(_EventBase):
    type: Literal["escalation_triggered"] = "escalation_triggered"
    reason: str
    score: float | None = None
    section_id: str | None = None


class BudgetWarningEvent(_EventBase):
    type: Literal["budget_warning"] = "budget_warning"
    tokens_used: int
    max_tokens: int


class NewIssueDetectedEvent(_EventBase):
    type: Literal["new_issue_detected"] = "new_issue_detected"
    section_id: str
    issue: Issue


class RefinementCompleteEvent(_EventBase):
    type: Literal["refinement_complete"] = "refinement_complete"
    status: RefinementStatus
    final_score: float
    iterations: int
    stop_reason: StopReason | None = None
    tokens_used: int = 0


RefinementEvent = Annotated[
    Union[
        RefinementStartEvent,
        ArbiterCompleteEvent,
        BatchStartedEvent,
        TaskStartedEvent,
        PatchAppliedEvent,
        VerificationResultEvent,
        QualityLockTriggeredEvent,
        SectionLockedEvent,
        BatchCompleteEvent,
        IterationCompleteEvent,
        EscalationTriggeredEvent,
        BudgetWarningEvent,
        NewIssueDetectedEvent,
        RefinementCompleteEvent,
    ],
    Field(discriminator="type"),
]
