"""Consensus Aggregator: two-judge fast path with a tiebreaker on disagreement.

Flow:
    primary + secondary (concurrently)
      ├─ both agree (same recommendation or same score band) → unanimous
      ├─ disagree → tiebreaker → 2-of-3 majority, else tiebreaker's band
      └─ one unavailable → tiebreaker substitutes; <2 usable votes → EvaluatorUnavailable
"""

import asyncio
import logging
from collections import Counter

import numpy as np

from models.schemas.consensus import ConsensusMethod, ConsensusResult
from models.schemas.verdict import Criterion, EvaluationRequest, Recommendation, Verdict
from services.refinement.base import DEFAULT_JUDGE_WEIGHT, EvaluatorClient
from services.refinement.errors import EvaluatorUnavailable
from services.refinement.evaluator import evaluate_safely, score_band

logger = logging.getLogger(__name__)


def votes_agree(a: Verdict, b: Verdict) -> bool:
    return a.recommendation == b.recommendation or score_band(a.overall_score) == score_band(b.overall_score)


def weighted_mean(values: list[float], weights: list[float]) -> float:
    w = np.asarray(weights, dtype=float)
    if w.sum() <= 0:
        return float(np.mean(values)) if values else 0.0
    return float(np.average(np.asarray(values, dtype=float), weights=w))


def _weights_for(votes: list[Verdict], weights: dict[str, float]) -> list[float]:
    return [weights.get(v.evaluator_id, DEFAULT_JUDGE_WEIGHT) for v in votes]


def _criteria_means(votes: list[Verdict], vote_weights: list[float]) -> dict[Criterion, float]:
    means: dict[Criterion, float] = {}
    for criterion in Criterion:
        scored = [(v.criteria_scores[criterion], w) for v, w in zip(votes, vote_weights) if criterion in v.criteria_scores]
        if scored:
            means[criterion] = round(weighted_mean([s for s, _ in scored], [w for _, w in scored]), 4)
    return means


def _majority(votes: list[Verdict]) -> Recommendation | None:
    """Recommendation shared by at least two votes, by label first, then by score band."""
    for labels in (
        [v.recommendation for v in votes],
        [score_band(v.overall_score) for v in votes],
    ):
        label, count = Counter(labels).most_common(1)[0]
        if count >= 2:
            return label
    return None


def aggregate(votes: list[Verdict], weights: dict[str, float] | None = None) -> ConsensusResult:
    """Combine two or three usable votes. The last of three is the tiebreaker.

    Pure: the same votes and weights always give the same method and score.
    """
    weights = weights or {}
    if len(votes) not in (2, 3):
        raise ValueError(f"Consensus needs 2 or 3 votes, got {len(votes)}")

    vote_weights = _weights_for(votes, weights)
    final_score = round(weighted_mean([v.overall_score for v in votes], vote_weights), 4)
    criteria_scores = _criteria_means(votes, vote_weights)
    tokens = sum(v.tokens_used for v in votes)

    first, second = votes[0], votes[1]
    if len(votes) == 2:
        if votes_agree(first, second):
            method = ConsensusMethod.UNANIMOUS
            recommendation = _majority(votes) or first.recommendation
            reached = True
        else:
            # No third opinion available: heavier judge decides
            method = ConsensusMethod.MAJORITY
            recommendation = first.recommendation if vote_weights[0] >= vote_weights[1] else second.recommendation
            reached = False
        return ConsensusResult(
            votes=votes,
            method=method,
            final_score=final_score,
            final_recommendation=recommendation,
            consensus_reached=reached,
            criteria_scores=criteria_scores,
            tokens_used=tokens,
        )

    tiebreaker = votes[2]
    majority = _majority(votes)
    reached = votes_agree(tiebreaker, first) or votes_agree(tiebreaker, second)
    return ConsensusResult(
        votes=votes,
        method=ConsensusMethod.TIEBREAKER,
        final_score=final_score,
        final_recommendation=majority or tiebreaker.recommendation,
        consensus_reached=reached,
        criteria_scores=criteria_scores,
        tokens_used=tokens,
    )


class ConsensusAggregator:
    """Runs the judge panel for one evaluation request."""

    def __init__(self, primary: EvaluatorClient, secondary: EvaluatorClient, tiebreaker: EvaluatorClient) -> None:
        self.primary = primary
        self.secondary = secondary
        self.tiebreaker = tiebreaker

    @property
    def weights(self) -> dict[str, float]:
        return {c.agent_name: c.weight for c in (self.primary, self.secondary, self.tiebreaker)}

    async def evaluate(self, request: EvaluationRequest) -> ConsensusResult:
        first, second = await asyncio.gather(
            evaluate_safely(self.primary, request),
            evaluate_safely(self.secondary, request),
        )
        usable = [v for v in (first, second) if v.available]
        failed_tokens = sum(v.tokens_used for v in (first, second) if not v.available)

        if len(usable) == 2 and votes_agree(first, second):
            result = aggregate(usable, self.weights)
            logger.info(
                "Consensus unanimous (%.3f / %.3f), tiebreaker skipped",
                first.overall_score, second.overall_score,
            )
            return result

        if len(usable) == 2:
            logger.info(
                "Judges disagree (%s %.3f vs %s %.3f), invoking tiebreaker",
                first.recommendation.value, first.overall_score,
                second.recommendation.value, second.overall_score,
            )
        else:
            logger.warning("%d of 2 judges unavailable, tiebreaker substitutes", 2 - len(usable))

        third = await evaluate_safely(self.tiebreaker, request)
        if third.available:
            usable.append(third)

        if len(usable) < 2:
            raise EvaluatorUnavailable("consensus", f"only {len(usable)} usable verdict(s)")

        result = aggregate(usable, self.weights)
        result.tokens_used += failed_tokens
        logger.info(
            "Consensus %s: score=%.3f recommendation=%s reached=%s",
            result.method.value, result.final_score, result.final_recommendation.value, result.consensus_reached,
        )
        return result
