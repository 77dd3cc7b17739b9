"""Evaluator verdict contracts: criteria, issues, and the per-judge verdict."""

from enum import Enum

from pydantic import BaseModel, Field

from models.schemas.content import LessonContent


class Criterion(str, Enum):
    LEARNING_OBJECTIVE_ALIGNMENT = "learning_objective_alignment"
    PEDAGOGICAL_STRUCTURE = "pedagogical_structure"
    FACTUAL_ACCURACY = "factual_accuracy"
    CLARITY_READABILITY = "clarity_readability"
    ENGAGEMENT_EXAMPLES = "engagement_examples"
    COMPLETENESS = "completeness"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Recommendation(str, Enum):
    ACCEPT = "ACCEPT"
    ACCEPT_WITH_MINOR_REVISION = "ACCEPT_WITH_MINOR_REVISION"
    ITERATIVE_REFINEMENT = "ITERATIVE_REFINEMENT"
    REGENERATE = "REGENERATE"
    ESCALATE_TO_HUMAN = "ESCALATE_TO_HUMAN"


# Lower rank sorts first
SEVERITY_RANK: dict[Severity, int] = {
    Severity.CRITICAL: 0,
    Severity.MAJOR: 1,
    Severity.MINOR: 2,
}

# Conflict resolution order, highest priority first
PRIORITY_HIERARCHY: list[Criterion] = [
    Criterion.FACTUAL_ACCURACY,
    Criterion.LEARNING_OBJECTIVE_ALIGNMENT,
    Criterion.PEDAGOGICAL_STRUCTURE,
    Criterion.CLARITY_READABILITY,
    Criterion.ENGAGEMENT_EXAMPLES,
    Criterion.COMPLETENESS,
]


class CriterionConfig(BaseModel):
    """One rubric line: a criterion and its share of the overall score."""
    criterion: Criterion
    weight: float = Field(..., ge=0.0, le=1.0)
    description: str = ""


DEFAULT_RUBRIC: list[CriterionConfig] = [
    CriterionConfig(
        criterion=Criterion.LEARNING_OBJECTIVE_ALIGNMENT,
        weight=0.25,
        description="Content directly serves the stated learning objectives",
    ),
    CriterionConfig(
        criterion=Criterion.PEDAGOGICAL_STRUCTURE,
        weight=0.20,
        description="Logical progression, scaffolding, and section flow",
    ),
    CriterionConfig(
        criterion=Criterion.FACTUAL_ACCURACY,
        weight=0.15,
        description="Claims are correct and consistent with source materials",
    ),
    CriterionConfig(
        criterion=Criterion.CLARITY_READABILITY,
        weight=0.15,
        description="Clear language appropriate for the audience",
    ),
    CriterionConfig(
        criterion=Criterion.ENGAGEMENT_EXAMPLES,
        weight=0.15,
        description="Concrete examples and engaging explanations",
    ),
    CriterionConfig(
        criterion=Criterion.COMPLETENESS,
        weight=0.10,
        description="All required topics are covered in sufficient depth",
    ),
]


class Issue(BaseModel):
    criterion: Criterion
    severity: Severity
    location: str = ""
    description: str = ""
    suggested_fix: str = ""
    quoted_text: str | None = None


class Verdict(BaseModel):
    """Structured output of a single evaluator.

    `error` is only set on the low-confidence stand-in produced when the
    evaluator could not be reached.
    """
    overall_score: float = Field(0.0, ge=0.0, le=1.0)
    passed: bool = False
    confidence: Confidence = Confidence.MEDIUM
    criteria_scores: dict[Criterion, float] = {}
    issues: list[Issue] = []
    strengths: list[str] = []
    recommendation: Recommendation = Recommendation.ESCALATE_TO_HUMAN
    evaluator_id: str = ""
    tokens_used: int = 0
    duration_ms: int = 0
    error: str | None = None

    @property
    def available(self) -> bool:
        return self.error is None


class EvaluationRequest(BaseModel):
    content: LessonContent
    learning_objectives: list[str] = []
    source_materials: list[str] = []
    rubric: list[CriterionConfig] = DEFAULT_RUBRIC
