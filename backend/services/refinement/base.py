"""Abstract interfaces for the external agents the engine talks to."""

from abc import ABC, abstractmethod
import logging

from models.schemas.execution import (
    DeltaVerificationRequest,
    GenerationRequest,
    GenerationResponse,
    VerificationResult,
)
from models.schemas.verdict import EvaluationRequest, Verdict

logger = logging.getLogger(__name__)

DEFAULT_JUDGE_WEIGHT = 0.70


class BaseAgent(ABC):
    """Base class for agents backed by an external service.

    Subclasses may override:
        - agent_name: identifier used in agent_registry
        - setup(): acquire clients/credentials, called once before first use
    """

    agent_name: str = ""
    _ready: bool = False

    def setup(self) -> None:
        """Acquire external resources. Called once by agent_registry."""

    @property
    def is_ready(self) -> bool:
        return self._ready

    def ensure_ready(self) -> None:
        """Set up the agent if not already done."""
        if not self._ready:
            logger.info("Setting up agent: %s", self.agent_name)
            self.setup()
            self._ready = True


class EvaluatorClient(BaseAgent):
    """Opaque external judge.

    Implementations raise EvaluatorUnavailable when no verdict can be
    produced; callers go through evaluator.evaluate_safely().
    """

    weight: float = DEFAULT_JUDGE_WEIGHT

    @abstractmethod
    async def evaluate(self, request: EvaluationRequest) -> Verdict:
        """Score a whole lesson against the rubric."""

    @abstractmethod
    async def verify(self, request: DeltaVerificationRequest) -> VerificationResult:
        """Check a single patched section against the issue it addressed."""


class GenerationService(BaseAgent):
    """External content-generation service used by the executors."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        """Produce new section text. Errors are reported via `success=False`."""
