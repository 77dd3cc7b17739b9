"""Tests for prompt templates."""

from models.schemas.content import ContextAnchors
from models.schemas.plan import ContextScope, ContextWindow, TargetedIssue
from models.schemas.verdict import DEFAULT_RUBRIC, Criterion, Severity
from services import prompt_builder


def test_judge_prompt_lists_sections_and_rubric(lesson):
    prompt = prompt_builder.build_judge_prompt(lesson, lesson.learning_objectives, [], DEFAULT_RUBRIC)
    assert "## Introduction [intro]" in prompt
    assert "## Calvin Cycle [calvin]" in prompt
    assert "- learning_objective_alignment (25% weight)" in prompt
    assert '"completeness": <float 0-1>' in prompt
    assert "(none provided)" in prompt


def test_delta_prompt_includes_issue_and_anchors():
    issue = TargetedIssue(
        id="issue-1",
        target_section_id="light",
        criterion=Criterion.FACTUAL_ACCURACY,
        severity=Severity.CRITICAL,
        description="Oxygen comes from water, not CO2",
        suggested_fix="Say the oxygen comes from split water",
    )
    prompt = prompt_builder.build_delta_judge_prompt(
        "Old text.", "New text.", issue, ContextAnchors(prev_section_end="Plants make food."), DEFAULT_RUBRIC,
    )
    assert "Criterion: factual_accuracy" in prompt
    assert "Suggested Fix: Say the oxygen comes from split water" in prompt
    assert "Plants make food." in prompt
    assert "N/A (This is the last section.)" in prompt


def test_patcher_prompt_targets_paragraph():
    window = ContextWindow(start_quote="Water is split", scope=ContextScope.PARAGRAPH)
    prompt = prompt_builder.build_patcher_prompt("Light Reactions", "Text.", "Fix it.", ContextAnchors(), window)
    assert 'start: "Water is split"' in prompt
    assert 'end: "(section end)"' in prompt
    assert "N/A (This is the first section.)" in prompt


def test_patcher_prompt_defaults_to_section_scope():
    prompt = prompt_builder.build_patcher_prompt("", "Text.", "Fix it.", ContextAnchors())
    assert "SECTION TITLE: (untitled)" in prompt
    assert "throughout this section" in prompt


def test_regeneration_prompt():
    prompt = prompt_builder.build_regeneration_prompt(
        "Calvin Cycle", "Old.", "Expand.", ContextAnchors(), ["Explain carbon fixation"], ["Source A"], 120,
    )
    assert "about 120 words" in prompt
    assert "- Explain carbon fixation" in prompt
    assert "Source A" in prompt
