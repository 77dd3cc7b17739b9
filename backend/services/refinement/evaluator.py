"""Evaluator Client: rubric scoring helpers and the Gemini-backed judge.

Verdict scoring:
    overall_score = Σ weight_c * score_c / Σ weight_c   (criteria present)

Recommendation bands:
    >= 0.90  ACCEPT
    >= 0.75  ACCEPT_WITH_MINOR_REVISION  (no critical issue, <= 3 issues)
    >= 0.60  ITERATIVE_REFINEMENT
    <  0.60  REGENERATE
    low confidence -> ESCALATE_TO_HUMAN
"""

import logging
import time
from typing import Any

from pydantic import ValidationError

from config import settings
from models.schemas.execution import DeltaVerificationRequest, VerificationResult
from models.schemas.verdict import (
    Confidence,
    Criterion,
    CriterionConfig,
    EvaluationRequest,
    Issue,
    Recommendation,
    Severity,
    Verdict,
)
from services import gemini_client, prompt_builder
from services.refinement.base import DEFAULT_JUDGE_WEIGHT, EvaluatorClient
from services.refinement.errors import EvaluatorUnavailable, RubricWeightError

logger = logging.getLogger(__name__)

WEIGHT_TOLERANCE = 1e-3
ACCEPT_SCORE = 0.90
MINOR_REVISION_SCORE = 0.75
REFINEMENT_SCORE = 0.60
MAX_MINOR_REVISION_ISSUES = 3


def validate_rubric(rubric: list[CriterionConfig]) -> None:
    """Raise RubricWeightError unless weights sum to 1.0 (±1e-3)."""
    total = sum(c.weight for c in rubric)
    if abs(total - 1.0) >= WEIGHT_TOLERANCE:
        raise RubricWeightError(f"Rubric weights must sum to 1.0, got {total:.4f}")
    criteria = [c.criterion for c in rubric]
    if len(set(criteria)) != len(criteria):
        raise RubricWeightError("Rubric lists a criterion more than once")


def compute_overall_score(criteria_scores: dict[Criterion, float], rubric: list[CriterionConfig]) -> float:
    weighted = 0.0
    total_weight = 0.0
    for c in rubric:
        if c.criterion in criteria_scores:
            weighted += c.weight * criteria_scores[c.criterion]
            total_weight += c.weight
    if total_weight == 0:
        return 0.0
    return round(min(1.0, max(0.0, weighted / total_weight)), 4)


def score_band(score: float) -> Recommendation:
    """Decision band from the score alone."""
    if score >= ACCEPT_SCORE:
        return Recommendation.ACCEPT
    if score >= MINOR_REVISION_SCORE:
        return Recommendation.ACCEPT_WITH_MINOR_REVISION
    if score >= REFINEMENT_SCORE:
        return Recommendation.ITERATIVE_REFINEMENT
    return Recommendation.REGENERATE


def determine_recommendation(score: float, issues: list[Issue], confidence: Confidence) -> Recommendation:
    if confidence == Confidence.LOW:
        return Recommendation.ESCALATE_TO_HUMAN
    if score >= ACCEPT_SCORE:
        return Recommendation.ACCEPT
    if score >= MINOR_REVISION_SCORE:
        has_critical = any(i.severity == Severity.CRITICAL for i in issues)
        if not has_critical and len(issues) <= MAX_MINOR_REVISION_ISSUES:
            return Recommendation.ACCEPT_WITH_MINOR_REVISION
        return Recommendation.ITERATIVE_REFINEMENT
    if score >= REFINEMENT_SCORE:
        return Recommendation.ITERATIVE_REFINEMENT
    return Recommendation.REGENERATE


def unavailable_verdict(evaluator_id: str, reason: str) -> Verdict:
    """Low-confidence stand-in for an evaluator that could not answer."""
    return Verdict(
        confidence=Confidence.LOW,
        recommendation=Recommendation.ESCALATE_TO_HUMAN,
        evaluator_id=evaluator_id,
        error=reason or "unavailable",
    )


async def evaluate_safely(client: EvaluatorClient, request: EvaluationRequest) -> Verdict:
    """Call an evaluator; failures become a low-confidence verdict, never an exception."""
    try:
        return await client.evaluate(request)
    except EvaluatorUnavailable as e:
        logger.warning("%s", e)
        return unavailable_verdict(client.agent_name, e.reason)
    except Exception as e:
        logger.error("Evaluator %s failed: %s", client.agent_name, e)
        return unavailable_verdict(client.agent_name, str(e))


def _parse_scores(raw: Any) -> dict[Criterion, float]:
    scores: dict[Criterion, float] = {}
    if not isinstance(raw, dict):
        return scores
    for key, value in raw.items():
        try:
            criterion = Criterion(key)
            score = float(value)
        except (ValueError, TypeError):
            continue
        # Accept 0-100 scales as well
        if score > 1.0:
            score = score / 100.0
        scores[criterion] = min(1.0, max(0.0, score))
    return scores


def _parse_issues(raw: Any) -> list[Issue]:
    issues: list[Issue] = []
    if not isinstance(raw, list):
        return issues
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            issues.append(Issue(**{k: v for k, v in item.items() if k in Issue.model_fields}))
        except ValidationError as e:
            logger.debug("Dropping malformed issue: %s", e)
    return issues


def _parse_confidence(raw: Any) -> Confidence:
    try:
        return Confidence(str(raw).lower())
    except ValueError:
        return Confidence.MEDIUM


def parse_verdict(
    data: dict[str, Any],
    rubric: list[CriterionConfig],
    evaluator_id: str,
    tokens_used: int = 0,
    duration_ms: int = 0,
) -> Verdict:
    """Build a Verdict from an evaluator's JSON reply."""
    criteria_scores = _parse_scores(data.get("criteria_scores"))
    if not criteria_scores:
        raise EvaluatorUnavailable(evaluator_id, "reply contained no criteria scores")
    issues = _parse_issues(data.get("issues"))
    confidence = _parse_confidence(data.get("confidence"))
    overall = compute_overall_score(criteria_scores, rubric)
    recommendation = determine_recommendation(overall, issues, confidence)
    strengths = [str(s) for s in data.get("strengths") or []]

    return Verdict(
        overall_score=overall,
        passed=recommendation in (Recommendation.ACCEPT, Recommendation.ACCEPT_WITH_MINOR_REVISION),
        confidence=confidence,
        criteria_scores=criteria_scores,
        issues=issues,
        strengths=strengths,
        recommendation=recommendation,
        evaluator_id=evaluator_id,
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )


def parse_verification(data: dict[str, Any], tokens_used: int = 0, duration_ms: int = 0) -> VerificationResult:
    return VerificationResult(
        passed=bool(data.get("passed", False)),
        confidence=_parse_confidence(data.get("confidence")),
        reasoning=str(data.get("reasoning") or ""),
        new_issues=_parse_issues(data.get("newIssues", data.get("new_issues"))),
        criteria_scores=_parse_scores(data.get("criteria_scores")),
        tokens_used=tokens_used,
        duration_ms=duration_ms,
    )


class GeminiEvaluator(EvaluatorClient):
    """Judge backed by a Gemini model."""

    def __init__(self, agent_name: str, model: str, weight: float = DEFAULT_JUDGE_WEIGHT) -> None:
        self.agent_name = agent_name
        self.model = model
        self.weight = weight

    def setup(self) -> None:
        if gemini_client.get_client() is None:
            logger.warning("Evaluator %s has no Gemini client; it will report unavailable", self.agent_name)

    async def evaluate(self, request: EvaluationRequest) -> Verdict:
        prompt = prompt_builder.build_judge_prompt(
            request.content,
            request.learning_objectives or request.content.learning_objectives,
            request.source_materials or request.content.source_materials,
            request.rubric,
        )
        start = time.monotonic()
        reply = await gemini_client.generate_json(prompt, self.model, temperature=settings.judge_temperature)
        if reply is None:
            raise EvaluatorUnavailable(self.agent_name, "no response from Gemini")
        duration_ms = int((time.monotonic() - start) * 1000)
        return parse_verdict(reply.data, request.rubric, self.agent_name, reply.tokens_used, duration_ms)

    async def verify(self, request: DeltaVerificationRequest) -> VerificationResult:
        prompt = prompt_builder.build_delta_judge_prompt(
            request.original_content,
            request.patched_content,
            request.addressed_issue,
            request.context_anchors,
            request.rubric,
        )
        start = time.monotonic()
        reply = await gemini_client.generate_json(
            prompt, self.model, temperature=settings.judge_temperature, max_output_tokens=1024
        )
        if reply is None:
            raise EvaluatorUnavailable(self.agent_name, "no verification response from Gemini")
        duration_ms = int((time.monotonic() - start) * 1000)
        return parse_verification(reply.data, reply.tokens_used, duration_ms)
