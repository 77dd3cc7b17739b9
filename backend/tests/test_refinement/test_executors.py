"""Tests for the Patcher, Section-Regenerator and Full-Regenerator."""

import pytest

from fakes import FakeGenerator
from models.schemas.execution import GenerationResponse, RegenerationResult
from models.schemas.plan import ContextScope, ContextWindow, FixAction, SectionRefinementTask, TargetedIssue
from models.schemas.verdict import Criterion, Severity
from services.refinement.executors import (
    FullRegenerator,
    Patcher,
    SectionRegenerator,
    build_diff_summary,
    clamp_target_words,
    estimate_regeneration_tokens,
    validate_regeneration,
)


def _task(section_id: str = "light", issues: int = 1, action=FixAction.SURGICAL_EDIT) -> SectionRefinementTask:
    source = [
        TargetedIssue(
            id=f"{section_id}:clarity:{n}",
            target_section_id=section_id,
            criterion=Criterion.CLARITY_READABILITY,
            severity=Severity.MAJOR,
            location=section_id,
            description="Too terse",
            context_window=ContextWindow(start_quote="Water is split", scope=ContextScope.PARAGRAPH),
        )
        for n in range(issues)
    ]
    return SectionRefinementTask(
        section_id=section_id,
        action_type=action,
        synthesized_instructions="Address the following issues in this section:\n1. Explain more",
        priority=Severity.MAJOR,
        source_issues=source,
    )


class TestDiffSummary:
    def test_no_change(self):
        assert build_diff_summary("same text", "same text") == "No changes detected"

    def test_added(self):
        assert build_diff_summary("a b", "a b c") == "Added 1 words (+2 characters)"

    def test_removed(self):
        assert build_diff_summary("a b c", "a b") == "Removed 1 words (-2 characters)"

    def test_rewrite(self):
        assert build_diff_summary("cat", "dog") == "Rewrote content (+0 words, +0 characters)"


class TestRegenerationHelpers:
    def test_clamp(self):
        assert clamp_target_words(None) == 300
        assert clamp_target_words(10) == 50
        assert clamp_target_words(5000) == 2000
        assert clamp_target_words(400) == 400

    def test_token_estimate(self):
        task = _task(issues=2)
        estimate = estimate_regeneration_tokens(task, "x" * 400, ["y" * 400], [], 300)
        assert estimate == 500 + 100 + 200 + 390

    @pytest.mark.parametrize("words,ok", [(89, False), (90, True), (110, True), (111, False)])
    def test_word_count_range(self, words, ok):
        result = RegenerationResult(success=True, regenerated_content="word " * words, word_count=words)
        assert (validate_regeneration(result, 100) == []) is ok

    def test_failed_result(self):
        result = RegenerationResult(success=False, regenerated_content="", error_message="quota")
        assert validate_regeneration(result, 100) == ["Regeneration failed: quota"]


class TestPatcher:
    @pytest.mark.asyncio
    async def test_success(self, lesson):
        generator = FakeGenerator([GenerationResponse(content="  Chlorophyll absorbs sunlight.  ", tokens_used=320)])
        section = lesson.get_section("light")

        result = await Patcher(generator).execute(_task(), section, budget=5000)

        assert result.success is True
        assert result.patched_content == "Chlorophyll absorbs sunlight."
        assert result.tokens_used == 320
        assert result.diff_summary.startswith("Removed")
        request = generator.requests[0]
        assert request.mode == "patch"
        assert request.budget == 1000
        assert request.original_content == section.content
        assert request.context_window.start_quote == "Water is split"

    @pytest.mark.asyncio
    async def test_multiple_issues_use_whole_section(self, lesson):
        generator = FakeGenerator()
        await Patcher(generator).execute(_task(issues=2), lesson.get_section("light"), budget=5000)
        assert generator.requests[0].context_window is None

    @pytest.mark.asyncio
    async def test_generation_error_is_a_result(self, lesson):
        generator = FakeGenerator([GenerationResponse(success=False, error_message="rate limited", tokens_used=5)])
        section = lesson.get_section("light")

        result = await Patcher(generator).execute(_task(), section, budget=5000)

        assert result.success is False
        assert result.patched_content == section.content
        assert result.error_message == "rate limited"
        assert result.tokens_used == 5

    @pytest.mark.asyncio
    async def test_empty_reply(self, lesson):
        generator = FakeGenerator([GenerationResponse(content="   ", tokens_used=10)])
        result = await Patcher(generator).execute(_task(), lesson.get_section("light"), budget=5000)
        assert result.success is False
        assert "Empty" in result.error_message

    @pytest.mark.asyncio
    async def test_exception_does_not_escape(self, lesson):
        generator = FakeGenerator([RuntimeError("socket closed")])
        result = await Patcher(generator).execute(_task(), lesson.get_section("light"), budget=5000)
        assert result.success is False
        assert result.error_message == "socket closed"


class TestSectionRegenerator:
    @pytest.mark.asyncio
    async def test_regenerates_within_range(self, lesson):
        generator = FakeGenerator([GenerationResponse(content="word " * 100, tokens_used=900)])
        result = await SectionRegenerator(generator).execute(
            _task(action=FixAction.REGENERATE_SECTION),
            lesson.get_section("light"),
            budget=5000,
            learning_objectives=lesson.learning_objectives,
            supporting_context=lesson.source_materials,
            target_word_count=100,
        )
        assert result.success is True
        assert result.word_count == 100
        assert result.warnings == []
        request = generator.requests[0]
        assert request.mode == "regenerate"
        assert request.target_word_count == 100
        assert request.supporting_context == lesson.source_materials

    @pytest.mark.asyncio
    async def test_word_count_warning(self, lesson):
        generator = FakeGenerator([GenerationResponse(content="word " * 20, tokens_used=300)])
        result = await SectionRegenerator(generator).execute(
            _task(), lesson.get_section("light"), 5000, [], [], target_word_count=100
        )
        assert result.success is True
        assert len(result.warnings) == 1
        assert "below target range" in result.warnings[0]

    @pytest.mark.asyncio
    async def test_default_target_follows_section_length(self, lesson):
        generator = FakeGenerator()
        await SectionRegenerator(generator).execute(_task(), lesson.get_section("light"), 5000, [], [])
        # 15 words, clamped up to the minimum
        assert generator.requests[0].target_word_count == 50

    @pytest.mark.asyncio
    async def test_failure_keeps_original(self, lesson):
        generator = FakeGenerator([GenerationResponse(success=False, error_message="boom")])
        section = lesson.get_section("light")
        result = await SectionRegenerator(generator).execute(_task(), section, 5000, [], [])
        assert result.success is False
        assert result.regenerated_content == section.content


class TestFullRegenerator:
    def test_emits_restart_signal(self, lesson):
        task = _task("intro", action=FixAction.FULL_REGENERATE)
        signal = FullRegenerator().execute(task, lesson)
        assert signal.lesson_id == lesson.lesson_id
        assert signal.section_id == "intro"
        assert signal.reason == "Too terse"
        assert len(signal.issues) == 1
