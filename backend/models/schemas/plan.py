"""Arbiter output: targeted issues, per-section tasks, and the refinement plan."""

from enum import Enum

from pydantic import BaseModel, Field

from models.schemas.content import ContextAnchors
from models.schemas.verdict import Criterion, Issue, Severity


class FixAction(str, Enum):
    SURGICAL_EDIT = "SURGICAL_EDIT"
    REGENERATE_SECTION = "REGENERATE_SECTION"
    FULL_REGENERATE = "FULL_REGENERATE"


# Ordered from least to most invasive
ACTION_LADDER: list[FixAction] = [
    FixAction.SURGICAL_EDIT,
    FixAction.REGENERATE_SECTION,
    FixAction.FULL_REGENERATE,
]

STRUCTURAL_CRITERIA: frozenset[Criterion] = frozenset({
    Criterion.PEDAGOGICAL_STRUCTURE,
    Criterion.LEARNING_OBJECTIVE_ALIGNMENT,
})


def is_structural_failure(issue: Issue) -> bool:
    """A critical issue on a structural criterion needs a full restart."""
    return issue.severity == Severity.CRITICAL and issue.criterion in STRUCTURAL_CRITERIA


class ContextScope(str, Enum):
    PARAGRAPH = "paragraph"
    SECTION = "section"
    GLOBAL = "global"


class ContextWindow(BaseModel):
    start_quote: str | None = None
    end_quote: str | None = None
    scope: ContextScope = ContextScope.SECTION


class TargetedIssue(Issue):
    id: str
    target_section_id: str
    fix_action: FixAction = FixAction.SURGICAL_EDIT
    context_window: ContextWindow = ContextWindow()
    fix_instructions: str = ""
    judge_count: int = 1  # distinct evaluators that flagged it


class SectionRefinementTask(BaseModel):
    section_id: str
    action_type: FixAction
    synthesized_instructions: str
    context_anchors: ContextAnchors = ContextAnchors()
    priority: Severity
    source_issues: list[TargetedIssue]


class ConflictResolution(BaseModel):
    section_id: str
    location: str
    winning_issue_id: str
    losing_issue_id: str
    winning_criterion: Criterion
    losing_criterion: Criterion
    discarded_instruction: str = ""
    rationale: str


class PlanStatus(str, Enum):
    PENDING = "PENDING"
    EXECUTING = "EXECUTING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class AgreementLevel(str, Enum):
    HIGH = "high"
    MODERATE = "moderate"
    LOW = "low"


class RefinementPlan(BaseModel):
    """Refinement plan produced by the Arbiter for one iteration."""
    status: PlanStatus = PlanStatus.PENDING
    tasks: list[SectionRefinementTask] = []
    execution_batches: list[list[SectionRefinementTask]] = []
    agreement_score: float = Field(1.0, ge=0.0, le=1.0)
    agreement_level: AgreementLevel = AgreementLevel.HIGH
    requires_human_review: bool = False
    conflict_resolutions: list[ConflictResolution] = []
    rejected_issues: list[TargetedIssue] = []  # filtered out by the agreement policy
    unresolved_issues: list[Issue] = []  # could not be placed in any section
    estimated_cost: int = 0
