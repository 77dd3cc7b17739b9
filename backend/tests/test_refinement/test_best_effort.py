"""Tests for best-effort selection."""

import pytest

from fakes import make_issue
from models.schemas.best_effort import QualityStatus, RefinementStatus
from models.schemas.iteration import IterationResult
from models.schemas.refinement_config import RefinementConfig
from models.schemas.verdict import Criterion, Severity
from services.refinement.best_effort import (
    create_best_effort_result,
    determine_quality_status,
    generate_improvement_hints,
    select_best_iteration,
)


@pytest.fixture
def history(lesson):
    def build(*scores):
        return [
            IterationResult(
                iteration=i,
                content=lesson.with_section("intro", f"Version {i}."),
                score=score,
            )
            for i, score in enumerate(scores)
        ]
    return build


class TestSelectBestIteration:
    def test_picks_highest(self, history):
        assert select_best_iteration(history(0.70, 0.79, 0.76)).iteration == 1

    def test_ties_keep_earliest(self, history):
        assert select_best_iteration(history(0.70, 0.80, 0.80)).iteration == 1

    def test_empty_history(self):
        with pytest.raises(ValueError):
            select_best_iteration([])


class TestQualityStatus:
    @pytest.mark.parametrize(
        "score,expected",
        [
            (0.85, QualityStatus.GOOD),
            (0.84, QualityStatus.ACCEPTABLE),
            (0.75, QualityStatus.ACCEPTABLE),
            (0.74, QualityStatus.BELOW_STANDARD),
        ],
    )
    def test_full_auto_bands(self, score, expected):
        assert determine_quality_status(score, RefinementConfig.for_mode("full-auto")) == expected


class TestImprovementHints:
    def test_severity_order_and_format(self):
        issues = [
            make_issue("intro", severity=Severity.MINOR, suggested_fix="Add an example"),
            make_issue("light", criterion=Criterion.FACTUAL_ACCURACY, severity=Severity.CRITICAL,
                       suggested_fix="Correct the oxygen source"),
        ]
        assert generate_improvement_hints(issues) == [
            "Improve factual accuracy: Correct the oxygen source",
            "Improve clarity readability: Add an example",
        ]

    def test_falls_back_to_description_and_dedupes(self):
        issues = [make_issue("intro", suggested_fix="", description="Too vague")] * 2
        assert generate_improvement_hints(issues) == ["Improve clarity readability: Too vague"]

    def test_capped(self):
        issues = [make_issue("intro", suggested_fix=f"Fix {i}") for i in range(8)]
        assert len(generate_improvement_hints(issues)) == 5


class TestCreateBestEffortResult:
    def test_earlier_iteration_wins(self, history):
        config = RefinementConfig.for_mode("full-auto")
        result = create_best_effort_result(history(0.70, 0.79, 0.76), config)

        assert result.best_iteration == 1
        assert result.best_score == pytest.approx(0.79)
        assert result.quality_status == QualityStatus.ACCEPTABLE
        assert result.final_status == RefinementStatus.ACCEPTED_WARNING
        assert result.content.get_section("intro").content == "Version 1."
        assert "higher than the final iteration 2" in result.selection_reason

    def test_latest_iteration_wins(self, history):
        result = create_best_effort_result(history(0.70, 0.88), RefinementConfig.for_mode("full-auto"))
        assert result.final_status == RefinementStatus.ACCEPTED
        assert result.selection_reason.startswith("Latest iteration 1")

    def test_below_standard_by_mode(self, history):
        semi = create_best_effort_result(history(0.60, 0.65), RefinementConfig.for_mode("semi-auto"))
        full = create_best_effort_result(history(0.60, 0.65), RefinementConfig.for_mode("full-auto"))
        assert semi.final_status == RefinementStatus.ESCALATED
        assert full.final_status == RefinementStatus.BEST_EFFORT

    def test_unresolved_issues_feed_hints(self, history):
        unresolved = [make_issue("calvin", suggested_fix="Explain carbon fixation")]
        result = create_best_effort_result(history(0.60), RefinementConfig.for_mode("full-auto"), unresolved)
        assert result.unresolved_issues == unresolved
        assert result.improvement_hints == ["Improve clarity readability: Explain carbon fixation"]

    def test_unresolved_issues_ignored_when_earlier_iteration_wins(self, history):
        snapshots = history(0.70, 0.79, 0.76)
        snapshots[1].issues = [make_issue("intro", suggested_fix="Name the two stages")]
        unresolved = [make_issue("calvin", suggested_fix="Explain carbon fixation")]

        result = create_best_effort_result(snapshots, RefinementConfig.for_mode("full-auto"), unresolved)

        assert result.best_iteration == 1
        assert result.unresolved_issues == snapshots[1].issues
        assert result.improvement_hints == ["Improve clarity readability: Name the two stages"]
