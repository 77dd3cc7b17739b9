"""Executors: Patcher, Section-Regenerator, and Full-Regenerator.

None of them raise on external failures and none retry internally;
the escalation ladder is driven by the orchestrator.
"""

import logging
import math
import time

from models.schemas.content import LessonContent, LessonSection
from models.schemas.execution import (
    GenerationRequest,
    PatchResult,
    RegenerationResult,
    RestartSignal,
)
from models.schemas.plan import FixAction, SectionRefinementTask
from services.refinement.base import GenerationService
from services.refinement.task_router import TOKEN_COSTS

logger = logging.getLogger(__name__)

DEFAULT_TARGET_WORDS = 300
MIN_TARGET_WORDS = 50
MAX_TARGET_WORDS = 2000
WORD_COUNT_TOLERANCE = 0.10

BASE_PROMPT_TOKENS = 500
TOKENS_PER_ISSUE = 50
CHARS_PER_TOKEN = 4
TOKENS_PER_WORD = 1.3


def count_words(text: str) -> int:
    return len(text.split())


def build_diff_summary(original: str, patched: str) -> str:
    if original == patched:
        return "No changes detected"
    word_delta = count_words(patched) - count_words(original)
    char_delta = len(patched) - len(original)
    if word_delta > 0:
        return f"Added {word_delta} words ({char_delta:+d} characters)"
    if word_delta < 0:
        return f"Removed {-word_delta} words ({char_delta:+d} characters)"
    return f"Rewrote content (+0 words, {char_delta:+d} characters)"


def clamp_target_words(target: int | None) -> int:
    if target is None:
        return DEFAULT_TARGET_WORDS
    return max(MIN_TARGET_WORDS, min(MAX_TARGET_WORDS, target))


def estimate_regeneration_tokens(
    task: SectionRefinementTask,
    original_content: str,
    supporting_context: list[str],
    learning_objectives: list[str],
    target_word_count: int | None = None,
) -> int:
    """Prompt + issues + context + expected output tokens."""
    context_chars = len(original_content) + sum(len(c) for c in supporting_context) + sum(len(o) for o in learning_objectives)
    output_tokens = clamp_target_words(target_word_count) * TOKENS_PER_WORD
    return int(
        BASE_PROMPT_TOKENS
        + TOKENS_PER_ISSUE * len(task.source_issues)
        + context_chars / CHARS_PER_TOKEN
        + output_tokens
    )


def validate_regeneration(result: RegenerationResult, target_word_count: int) -> list[str]:
    """Problems with a regeneration result; empty when it is usable as-is."""
    if not result.success:
        return [f"Regeneration failed: {result.error_message or 'unknown error'}"]
    if not result.regenerated_content.strip():
        return ["Regenerated content is empty"]
    low = math.floor(round(target_word_count * (1 - WORD_COUNT_TOLERANCE), 6))
    high = math.ceil(round(target_word_count * (1 + WORD_COUNT_TOLERANCE), 6))
    if result.word_count < low:
        return [f"Word count {result.word_count} below target range {low}-{high}"]
    if result.word_count > high:
        return [f"Word count {result.word_count} above target range {low}-{high}"]
    return []


class Patcher:
    """Surgical edit of a single section."""

    executor_name = "patcher"

    def __init__(self, service: GenerationService) -> None:
        self.service = service

    async def execute(self, task: SectionRefinementTask, section: LessonSection, budget: int) -> PatchResult:
        start = time.monotonic()
        # A single issue can be narrowed to its quoted passage
        window = task.source_issues[0].context_window if len(task.source_issues) == 1 else None
        request = GenerationRequest(
            section_id=section.id,
            instructions=task.synthesized_instructions,
            context_anchors=task.context_anchors,
            budget=max(0, min(budget, TOKEN_COSTS[FixAction.SURGICAL_EDIT][1])),
            mode="patch",
            section_title=section.title,
            original_content=section.content,
            context_window=window,
        )
        try:
            response = await self.service.generate(request)
        except Exception as e:
            logger.warning("Patch failed for %s: %s", section.id, e)
            return self._failed(section.content, str(e), 0, start)

        patched = response.content.strip()
        if not response.success:
            return self._failed(section.content, response.error_message or "generation failed", response.tokens_used, start)
        if not patched:
            return self._failed(section.content, "Empty response from generation service", response.tokens_used, start)

        return PatchResult(
            success=True,
            patched_content=patched,
            diff_summary=build_diff_summary(section.content, patched),
            tokens_used=response.tokens_used,
            duration_ms=int((time.monotonic() - start) * 1000),
        )

    @staticmethod
    def _failed(original: str, message: str, tokens: int, start: float) -> PatchResult:
        logger.warning("PatchFailed: %s", message)
        return PatchResult(
            success=False,
            patched_content=original,
            diff_summary="No changes detected",
            tokens_used=tokens,
            duration_ms=int((time.monotonic() - start) * 1000),
            error_message=message,
        )


class SectionRegenerator:
    """Rewrites a section from scratch, grounded in supporting context."""

    executor_name = "section-regenerator"

    def __init__(self, service: GenerationService) -> None:
        self.service = service

    async def execute(
        self,
        task: SectionRefinementTask,
        section: LessonSection,
        budget: int,
        learning_objectives: list[str],
        supporting_context: list[str],
        target_word_count: int | None = None,
    ) -> RegenerationResult:
        start = time.monotonic()
        target = clamp_target_words(target_word_count or count_words(section.content) or None)
        estimate = estimate_regeneration_tokens(task, section.content, supporting_context, learning_objectives, target)
        request = GenerationRequest(
            section_id=section.id,
            instructions=task.synthesized_instructions,
            context_anchors=task.context_anchors,
            budget=max(0, min(budget, estimate)),
            mode="regenerate",
            section_title=section.title,
            original_content=section.content,
            learning_objectives=learning_objectives,
            supporting_context=supporting_context,
            target_word_count=target,
        )
        try:
            response = await self.service.generate(request)
        except Exception as e:
            logger.warning("Section regeneration failed for %s: %s", section.id, e)
            return self._failed(section.content, str(e), 0, start)

        if not response.success:
            return self._failed(section.content, response.error_message or "generation failed", response.tokens_used, start)
        content = response.content.strip()
        if not content:
            return self._failed(section.content, "Empty response from generation service", response.tokens_used, start)

        result = RegenerationResult(
            success=True,
            regenerated_content=content,
            word_count=count_words(content),
            tokens_used=response.tokens_used,
            duration_ms=int((time.monotonic() - start) * 1000),
        )
        result.warnings = validate_regeneration(result, target)
        for warning in result.warnings:
            logger.info("Regeneration of %s: %s", section.id, warning)
        return result

    @staticmethod
    def _failed(original: str, message: str, tokens: int, start: float) -> RegenerationResult:
        logger.warning("Regeneration failed: %s", message)
        return RegenerationResult(
            success=False,
            regenerated_content=original,
            word_count=count_words(original),
            tokens_used=tokens,
            duration_ms=int((time.monotonic() - start) * 1000),
            error_message=message,
        )


class FullRegenerator:
    """Asks the caller to rebuild the whole lesson; performs no generation itself."""

    executor_name = "planner"

    def execute(self, task: SectionRefinementTask, content: LessonContent) -> RestartSignal:
        reasons = "; ".join(i.description for i in task.source_issues if i.description) or "structural failure"
        logger.warning("Full regeneration requested for lesson %s (section %s)", content.lesson_id, task.section_id)
        return RestartSignal(
            lesson_id=content.lesson_id,
            section_id=task.section_id,
            reason=reasons,
            issues=task.source_issues,
        )
