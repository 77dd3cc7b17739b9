"""Consensus Aggregator output."""

from enum import Enum

from pydantic import BaseModel

from models.schemas.verdict import Criterion, Recommendation, Verdict


class ConsensusMethod(str, Enum):
    UNANIMOUS = "unanimous"
    MAJORITY = "majority"
    TIEBREAKER = "tiebreaker"


class ConsensusResult(BaseModel):
    """Reconciled decision over 2-3 evaluator votes.

    `tiebreaker` always carries exactly three votes; `unanimous` and
    `majority` carry two or three.
    """
    votes: list[Verdict]
    method: ConsensusMethod
    final_score: float = 0.0
    final_recommendation: Recommendation = Recommendation.ESCALATE_TO_HUMAN
    consensus_reached: bool = True
    criteria_scores: dict[Criterion, float] = {}  # weighted mean across votes
    tokens_used: int = 0
