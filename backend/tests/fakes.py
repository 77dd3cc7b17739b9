"""Scripted stand-ins for the external evaluator and generation services."""

from models.schemas.execution import (
    DeltaVerificationRequest,
    GenerationRequest,
    GenerationResponse,
    VerificationResult,
)
from models.schemas.verdict import (
    Confidence,
    Criterion,
    EvaluationRequest,
    Issue,
    Recommendation,
    Severity,
    Verdict,
)
from services.refinement.base import EvaluatorClient, GenerationService
from services.refinement.evaluator import determine_recommendation


def make_verdict(
    score: float,
    evaluator_id: str = "judge",
    recommendation: Recommendation | None = None,
    issues: list[Issue] | None = None,
    criteria_scores: dict[Criterion, float] | None = None,
    tokens_used: int = 100,
) -> Verdict:
    issues = issues or []
    if criteria_scores is None:
        criteria_scores = {c: score for c in Criterion}
    return Verdict(
        overall_score=score,
        passed=score >= 0.75,
        confidence=Confidence.HIGH,
        criteria_scores=criteria_scores,
        issues=issues,
        recommendation=recommendation or determine_recommendation(score, issues, Confidence.HIGH),
        evaluator_id=evaluator_id,
        tokens_used=tokens_used,
    )


def make_issue(
    location: str,
    criterion: Criterion = Criterion.CLARITY_READABILITY,
    severity: Severity = Severity.MAJOR,
    quoted_text: str | None = None,
    description: str = "Sentence is hard to follow",
    suggested_fix: str = "Rephrase in plain language",
) -> Issue:
    return Issue(
        criterion=criterion,
        severity=severity,
        location=location,
        description=description,
        suggested_fix=suggested_fix,
        quoted_text=quoted_text,
    )


class FakeEvaluator(EvaluatorClient):
    """Returns scripted verdicts in order, repeating the last one."""

    def __init__(
        self,
        name: str,
        verdicts: list[Verdict] | None = None,
        verifications: list[VerificationResult] | None = None,
        weight: float = 0.70,
        error: Exception | None = None,
    ) -> None:
        self.agent_name = name
        self.weight = weight
        self.verdicts = list(verdicts or [])
        self.verifications = list(verifications or [])
        self.error = error
        self.calls = 0
        self.verify_requests: list[DeltaVerificationRequest] = []

    async def evaluate(self, request: EvaluationRequest) -> Verdict:
        self.calls += 1
        if self.error is not None:
            raise self.error
        verdict = self.verdicts[min(self.calls, len(self.verdicts)) - 1]
        return verdict.model_copy(update={"evaluator_id": self.agent_name}, deep=True)

    async def verify(self, request: DeltaVerificationRequest) -> VerificationResult:
        self.verify_requests.append(request)
        if not self.verifications:
            return VerificationResult(passed=True, confidence=Confidence.HIGH, tokens_used=50)
        result = self.verifications[min(len(self.verify_requests), len(self.verifications)) - 1]
        return result.model_copy(deep=True)


class FakeGenerator(GenerationService):
    """Returns scripted responses in order; defaults to a short rewrite."""

    agent_name = "generator"

    def __init__(self, responses: list[GenerationResponse | Exception] | None = None) -> None:
        self.responses = list(responses or [])
        self.requests: list[GenerationRequest] = []

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        if not self.responses:
            return GenerationResponse(content=f"Revised {request.section_id} text.", tokens_used=200)
        response = self.responses[min(len(self.requests), len(self.responses)) - 1]
        if isinstance(response, Exception):
            raise response
        return response
