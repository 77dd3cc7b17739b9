"""Pydantic contracts shared by the refinement engine components."""

from models.schemas.best_effort import BestEffortResult, RefinementResult
from models.schemas.consensus import ConsensusResult
from models.schemas.content import ContextAnchors, LessonContent, LessonSection
from models.schemas.execution import RouterDecision, TaskOutcome, VerificationResult
from models.schemas.iteration import ControllerDecision, IterationState
from models.schemas.plan import RefinementPlan, SectionRefinementTask, TargetedIssue
from models.schemas.refinement_config import RefinementConfig
from models.schemas.verdict import Issue, Verdict

__all__ = [
    "BestEffortResult",
    "RefinementResult",
    "ConsensusResult",
    "ContextAnchors",
    "LessonContent",
    "LessonSection",
    "RouterDecision",
    "TaskOutcome",
    "VerificationResult",
    "ControllerDecision",
    "IterationState",
    "RefinementPlan",
    "SectionRefinementTask",
    "TargetedIssue",
    "RefinementConfig",
    "Issue",
    "Verdict",
]
