"""Tests for the Delta-Verifier and readability heuristics."""

import pytest

from fakes import FakeEvaluator, make_issue
from models.schemas.content import ContextAnchors
from models.schemas.execution import VerificationResult
from models.schemas.plan import TargetedIssue
from models.schemas.verdict import Confidence, Criterion, Severity
from services.refinement.delta_verifier import DeltaVerifier, most_severe_issue
from services.refinement.readability import calculate_readability, validate_readability

READABLE = "Chlorophyll absorbs sunlight. It powers the plant."
RUN_ON = " ".join(["word"] * 40)


def _targeted(issue_id: str, severity: Severity) -> TargetedIssue:
    return TargetedIssue(
        id=issue_id,
        target_section_id="light",
        criterion=Criterion.CLARITY_READABILITY,
        severity=severity,
        location="light",
        description=issue_id,
    )


class FailingEvaluator(FakeEvaluator):
    async def verify(self, request):
        raise RuntimeError("judge offline")


class TestMostSevereIssue:
    def test_picks_critical(self):
        issues = [_targeted("minor", Severity.MINOR), _targeted("critical", Severity.CRITICAL)]
        assert most_severe_issue(issues).id == "critical"

    def test_ties_keep_order(self):
        issues = [_targeted("first", Severity.MAJOR), _targeted("second", Severity.MAJOR)]
        assert most_severe_issue(issues).id == "first"

    def test_empty(self):
        with pytest.raises(ValueError):
            most_severe_issue([])


class TestDeltaVerifier:
    @pytest.mark.asyncio
    async def test_accepted(self):
        judge = FakeEvaluator("primary")
        result = await DeltaVerifier(judge).verify(
            "light", "old", READABLE, [_targeted("a", Severity.MAJOR)], ContextAnchors()
        )
        assert result.passed is True
        assert result.accepted is True
        assert result.new_issues == []

    @pytest.mark.asyncio
    async def test_request_carries_most_severe_issue(self):
        judge = FakeEvaluator("primary")
        anchors = ContextAnchors(prev_section_end="Plants make food.")
        await DeltaVerifier(judge).verify(
            "light", "old", READABLE,
            [_targeted("minor", Severity.MINOR), _targeted("critical", Severity.CRITICAL)],
            anchors,
        )
        request = judge.verify_requests[0]
        assert request.addressed_issue.id == "critical"
        assert request.original_content == "old"
        assert request.patched_content == READABLE
        assert request.context_anchors == anchors

    @pytest.mark.asyncio
    async def test_critical_new_issue_rejects(self):
        judge = FakeEvaluator("primary", verifications=[
            VerificationResult(
                passed=True,
                confidence=Confidence.HIGH,
                new_issues=[make_issue("light", criterion=Criterion.FACTUAL_ACCURACY, severity=Severity.CRITICAL)],
            )
        ])
        result = await DeltaVerifier(judge).verify("light", "old", READABLE, [_targeted("a", Severity.MAJOR)], ContextAnchors())
        assert result.passed is True
        assert result.accepted is False

    @pytest.mark.asyncio
    async def test_verifier_error_is_failed_verification(self):
        result = await DeltaVerifier(FailingEvaluator("primary")).verify(
            "light", "old", READABLE, [_targeted("a", Severity.MAJOR)], ContextAnchors()
        )
        assert result.passed is False
        assert result.confidence == Confidence.LOW
        assert "judge offline" in result.reasoning

    @pytest.mark.asyncio
    async def test_unreadable_patch_adds_minor_issue(self):
        result = await DeltaVerifier(FakeEvaluator("primary")).verify(
            "light", "old", RUN_ON, [_targeted("a", Severity.MAJOR)], ContextAnchors()
        )
        assert len(result.new_issues) == 1
        issue = result.new_issues[0]
        assert issue.criterion == Criterion.CLARITY_READABILITY
        assert issue.severity == Severity.MINOR
        assert result.accepted is True


class TestReadability:
    def test_metrics(self):
        metrics = calculate_readability(READABLE)
        assert metrics.avg_sentence_length == pytest.approx(3.5)
        assert metrics.avg_word_length == pytest.approx(6.0)
        assert metrics.paragraph_break_ratio == pytest.approx(0.5)
        assert validate_readability(metrics).passed

    def test_long_sentences_flagged(self):
        check = validate_readability(calculate_readability(RUN_ON))
        assert not check.passed
        assert any("sentence length" in issue for issue in check.issues)

    def test_wall_of_text_flagged(self):
        text = " ".join(["Short sentence here."] * 20)
        check = validate_readability(calculate_readability(text))
        assert any("Paragraph break ratio" in issue for issue in check.issues)

    def test_empty_text(self):
        metrics = calculate_readability("   ")
        assert metrics.avg_sentence_length == 0.0
