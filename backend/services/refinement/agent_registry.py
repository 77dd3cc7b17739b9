"""Lazy agent registry for the judge panel and the generation service.

Module-level singletons, created and set up on first use.
"""

import logging

from config import settings
from services.refinement.base import BaseAgent

logger = logging.getLogger(__name__)

_registry: dict[str, BaseAgent] = {}

PANEL = ("primary_judge", "secondary_judge", "tiebreaker_judge")


def _create_agent(name: str) -> BaseAgent:
    """Factory: create an agent by name with deferred imports."""
    if name == "primary_judge":
        from services.refinement.evaluator import GeminiEvaluator
        return GeminiEvaluator(name, settings.judge_primary_model, settings.judge_primary_weight)
    elif name == "secondary_judge":
        from services.refinement.evaluator import GeminiEvaluator
        return GeminiEvaluator(name, settings.judge_secondary_model, settings.judge_secondary_weight)
    elif name == "tiebreaker_judge":
        from services.refinement.evaluator import GeminiEvaluator
        return GeminiEvaluator(name, settings.judge_tiebreaker_model, settings.judge_tiebreaker_weight)
    elif name == "generator":
        from services.refinement.generation import GeminiGenerationService
        return GeminiGenerationService(settings.generation_model)
    else:
        raise ValueError(f"Unknown agent: {name}")


def get_agent(name: str) -> BaseAgent:
    """Get an agent by name, creating and setting it up on first access."""
    if name not in _registry:
        _registry[name] = _create_agent(name)
    agent = _registry[name]
    agent.ensure_ready()
    return agent


def get_panel():
    """ConsensusAggregator over the three registered judges."""
    from services.refinement.consensus import ConsensusAggregator
    return ConsensusAggregator(*(get_agent(name) for name in PANEL))


def clear() -> None:
    """Drop all agents. Useful for testing."""
    _registry.clear()
