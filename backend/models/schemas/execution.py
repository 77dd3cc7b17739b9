"""Contracts between the Router, the executors, and the Delta-Verifier."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from models.schemas.content import ContextAnchors
from models.schemas.plan import ContextWindow, FixAction, SectionRefinementTask, TargetedIssue
from models.schemas.verdict import DEFAULT_RUBRIC, Confidence, Criterion, CriterionConfig, Issue, Severity


class RouterDecision(BaseModel):
    task: SectionRefinementTask
    action: FixAction
    executor: str
    estimated_tokens: int
    reason: str
    abandoned: bool = False  # no affordable action remains


class GenerationRequest(BaseModel):
    """Request sent to the external content-generation service."""
    section_id: str
    instructions: str
    context_anchors: ContextAnchors = ContextAnchors()
    budget: int = Field(..., ge=0)  # max tokens the call may spend
    mode: Literal["patch", "regenerate"] = "patch"
    section_title: str = ""
    original_content: str = ""
    learning_objectives: list[str] = []
    supporting_context: list[str] = []
    target_word_count: int | None = None
    context_window: ContextWindow | None = None  # patch target area


class GenerationResponse(BaseModel):
    content: str = ""
    tokens_used: int = 0
    success: bool = True
    error_message: str | None = None


class PatchResult(BaseModel):
    """Patcher output. `success=False` is the PatchFailed outcome."""
    success: bool
    patched_content: str
    diff_summary: str = ""
    tokens_used: int = 0
    duration_ms: int = 0
    error_message: str | None = None


class RegenerationResult(BaseModel):
    success: bool
    regenerated_content: str
    word_count: int = 0
    tokens_used: int = 0
    duration_ms: int = 0
    error_message: str | None = None
    warnings: list[str] = []


class RestartSignal(BaseModel):
    """Request to rebuild the whole lesson from the planning stage."""
    lesson_id: str
    section_id: str
    reason: str
    issues: list[TargetedIssue] = []


class DeltaVerificationRequest(BaseModel):
    section_id: str
    original_content: str
    patched_content: str
    addressed_issue: TargetedIssue
    context_anchors: ContextAnchors = ContextAnchors()
    rubric: list[CriterionConfig] = DEFAULT_RUBRIC


class VerificationResult(BaseModel):
    passed: bool = False
    confidence: Confidence = Confidence.LOW
    reasoning: str = ""
    new_issues: list[Issue] = []
    criteria_scores: dict[Criterion, float] = {}  # scores of the patched section
    tokens_used: int = 0
    duration_ms: int = 0

    @property
    def accepted(self) -> bool:
        return self.passed and not any(i.severity == Severity.CRITICAL for i in self.new_issues)


class TaskStatus(str, Enum):
    VERIFIED = "verified"
    ABANDONED = "abandoned"
    RESTART_REQUESTED = "restart_requested"
    CANCELLED = "cancelled"


class TaskOutcome(BaseModel):
    """Per-task result slot, merged by the Iteration Controller after a batch."""
    section_id: str
    status: TaskStatus
    action: FixAction | None = None
    attempts: int = 0
    new_content: str | None = None
    criteria_scores: dict[Criterion, float] = {}
    section_score: float | None = None
    tokens_used: int = 0
    unresolved_issues: list[TargetedIssue] = []
    restart_signal: RestartSignal | None = None
    message: str = ""
