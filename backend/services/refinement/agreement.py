"""Inter-rater agreement over judges' binary pass/fail per criterion.

Nominal Krippendorff's alpha on a judges x criteria reliability matrix:

    alpha = 1 - (n - 1) * Σ_{c!=k} o_ck / Σ_{c!=k} n_c * n_k

where o is the coincidence matrix built from every pairable unit
(criterion scored by >= 2 judges) and n_c its marginals.
"""

import logging

import numpy as np

from models.schemas.plan import AgreementLevel
from models.schemas.verdict import Criterion, Verdict

logger = logging.getLogger(__name__)

PASS_THRESHOLD = 0.75
HIGH_AGREEMENT = 0.80
MODERATE_AGREEMENT = 0.67


def reliability_matrix(verdicts: list[Verdict], pass_threshold: float = PASS_THRESHOLD) -> np.ndarray:
    """judges x criteria matrix of 1 (pass), 0 (fail), NaN (not scored)."""
    criteria = list(Criterion)
    matrix = np.full((len(verdicts), len(criteria)), np.nan)
    for i, verdict in enumerate(verdicts):
        for j, criterion in enumerate(criteria):
            score = verdict.criteria_scores.get(criterion)
            if score is not None:
                matrix[i, j] = 1.0 if score >= pass_threshold else 0.0
    return matrix


def krippendorff_alpha_nominal(matrix: np.ndarray) -> float:
    """Alpha for a judges x units matrix of nominal values (NaN = missing).

    Returns 1.0 when nothing can disagree (one judge, no pairable unit,
    or a single observed category).
    """
    if matrix.ndim != 2 or matrix.shape[0] < 2:
        return 1.0

    values = np.unique(matrix[~np.isnan(matrix)])
    if values.size < 2:
        return 1.0
    index = {v: i for i, v in enumerate(values)}
    coincidence = np.zeros((values.size, values.size))

    for unit in matrix.T:
        present = unit[~np.isnan(unit)]
        m_u = present.size
        if m_u < 2:
            continue
        counts = np.zeros(values.size)
        for v in present:
            counts[index[v]] += 1
        # Ordered pairs of distinct coders within the unit
        pairs = np.outer(counts, counts) - np.diag(counts)
        coincidence += pairs / (m_u - 1)

    n_c = coincidence.sum(axis=1)
    n = n_c.sum()
    if n <= 1:
        return 1.0
    observed = coincidence.sum() - np.trace(coincidence)
    expected = n_c.sum() ** 2 - (n_c ** 2).sum()
    if expected == 0:
        return 1.0
    return float(1.0 - (n - 1) * observed / expected)


def calculate_agreement(verdicts: list[Verdict], pass_threshold: float = PASS_THRESHOLD) -> float:
    """Agreement score clipped to [0, 1]."""
    if len(verdicts) < 2:
        return 1.0
    alpha = krippendorff_alpha_nominal(reliability_matrix(verdicts, pass_threshold))
    score = float(np.clip(alpha, 0.0, 1.0))
    logger.debug("Krippendorff alpha=%.4f (clipped %.4f) over %d judges", alpha, score, len(verdicts))
    return score


def agreement_level(score: float) -> AgreementLevel:
    if score >= HIGH_AGREEMENT:
        return AgreementLevel.HIGH
    if score >= MODERATE_AGREEMENT:
        return AgreementLevel.MODERATE
    return AgreementLevel.LOW
