"""Integration: a short refinement run against the real Gemini judges.

Run with: GEMINI_API_KEY=... pytest -m integration -v -s tests/test_refinement/test_gemini_integration.py
"""

import pytest

from config import settings
from models.schemas.refinement_config import RefinementConfig
from services.refinement import agent_registry
from services.refinement.events import EventStream
from services.refinement.orchestrator import refine

pytestmark = [
    pytest.mark.integration,
    pytest.mark.skipif(not settings.gemini_api_key, reason="GEMINI_API_KEY not set"),
]


@pytest.mark.asyncio
async def test_single_iteration_run(lesson):
    events = EventStream()
    config = RefinementConfig.for_mode("full-auto", max_iterations=1)
    result = await refine(
        lesson, config, agent_registry.get_panel(), agent_registry.get_agent("generator"), events=events,
    )

    print(f"\n  status={result.status.value} score={result.final_score:.3f} tokens={result.tokens_used}")
    for event in events.drain():
        print(f"  #{event.sequence} {event.type}")

    assert 0.0 <= result.final_score <= 1.0
    assert result.content.section_ids == lesson.section_ids
    assert result.iterations <= 1
