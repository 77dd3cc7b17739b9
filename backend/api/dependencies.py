"""Shared dependencies for API routes."""

from services.refinement import agent_registry
from services.refinement.base import GenerationService
from services.refinement.consensus import ConsensusAggregator


def get_panel() -> ConsensusAggregator:
    return agent_registry.get_panel()


def get_generator() -> GenerationService:
    return agent_registry.get_agent("generator")
