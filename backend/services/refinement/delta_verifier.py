"""Delta-Verifier: re-evaluates one patched section against the issue it addressed."""

import logging
import time

from models.schemas.content import ContextAnchors
from models.schemas.execution import DeltaVerificationRequest, VerificationResult
from models.schemas.plan import TargetedIssue
from models.schemas.verdict import DEFAULT_RUBRIC, Confidence, Criterion, CriterionConfig, Issue, SEVERITY_RANK, Severity
from services.refinement.base import EvaluatorClient
from services.refinement.readability import calculate_readability, validate_readability

logger = logging.getLogger(__name__)


def most_severe_issue(issues: list[TargetedIssue]) -> TargetedIssue:
    """The issue a patch is judged against; ties keep plan order."""
    if not issues:
        raise ValueError("task has no source issues")
    return min(issues, key=lambda i: SEVERITY_RANK[i.severity])


class DeltaVerifier:
    def __init__(self, client: EvaluatorClient, rubric: list[CriterionConfig] | None = None) -> None:
        self.client = client
        self.rubric = rubric or DEFAULT_RUBRIC

    async def verify(
        self,
        section_id: str,
        original_content: str,
        patched_content: str,
        source_issues: list[TargetedIssue],
        anchors: ContextAnchors,
    ) -> VerificationResult:
        addressed = most_severe_issue(source_issues)
        request = DeltaVerificationRequest(
            section_id=section_id,
            original_content=original_content,
            patched_content=patched_content,
            addressed_issue=addressed,
            context_anchors=anchors,
            rubric=self.rubric,
        )
        start = time.monotonic()
        try:
            result = await self.client.verify(request)
        except Exception as e:
            logger.warning("Verification of %s failed: %s", section_id, e)
            return VerificationResult(
                passed=False,
                confidence=Confidence.LOW,
                reasoning=f"Verification failed: {e}",
                duration_ms=int((time.monotonic() - start) * 1000),
            )

        readability = validate_readability(calculate_readability(patched_content))
        if not readability.passed:
            result.new_issues.append(Issue(
                criterion=Criterion.CLARITY_READABILITY,
                severity=Severity.MINOR,
                location=section_id,
                description="; ".join(readability.issues),
                suggested_fix="Shorten sentences and break the text into paragraphs",
            ))

        logger.info(
            "Verification %s: passed=%s accepted=%s new_issues=%d",
            section_id, result.passed, result.accepted, len(result.new_issues),
        )
        return result
