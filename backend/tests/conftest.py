"""Shared test configuration and pytest markers."""

import pytest

from models.schemas.content import LessonContent, LessonSection
from services.refinement.agent_registry import clear as clear_registry


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: calls the real Gemini API (needs GEMINI_API_KEY)"
    )


@pytest.fixture(autouse=True)
def _reset_registry():
    """Clear agent registry before each test."""
    clear_registry()
    yield
    clear_registry()


@pytest.fixture
def lesson() -> LessonContent:
    return LessonContent(
        lesson_id="lesson-photosynthesis",
        title="Photosynthesis Basics",
        sections=[
            LessonSection(
                id="intro",
                title="Introduction",
                content="Plants make their own food. They use light to do it. This lesson explains how.",
            ),
            LessonSection(
                id="light",
                title="Light Reactions",
                content="Chlorophyll absorbs light. Water is split and oxygen is released. ATP and NADPH are made.",
            ),
            LessonSection(
                id="calvin",
                title="Calvin Cycle",
                content="The Calvin cycle fixes carbon dioxide. It uses ATP and NADPH. Sugar is the result.",
            ),
        ],
        learning_objectives=["Explain the two stages of photosynthesis"],
        source_materials=["Photosynthesis converts light energy into chemical energy."],
    )
