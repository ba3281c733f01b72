"""Weighted score aggregation and the auto-approval decision."""

import math
from typing import Iterable, Optional

from shared.models import RegistrationStatus, clamp

DEFAULT_THRESHOLD = 80


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values (builtin round is banker's)."""
    return int(math.floor(value + 0.5))


def compute_aggregate(scored: Iterable[tuple[float, float]]) -> int:
    """
    Aggregate (score, weight) pairs into a 0-100 match score.

    aggregate = round(sum(score * weight) / sum(weight) * 10)

    An empty set scores 100. When every weight is zero the scores are
    averaged unweighted.
    """
    pairs = [(clamp(score), clamp(weight)) for score, weight in scored]
    if not pairs:
        return 100

    total_weight = sum(weight for _, weight in pairs)
    if total_weight == 0:
        mean = sum(score for score, _ in pairs) / len(pairs)
        return int(clamp(round_half_up(mean * 10), 0, 100))

    weighted = sum(score * weight for score, weight in pairs)
    return int(clamp(round_half_up(weighted / total_weight * 10), 0, 100))


def should_auto_approve(
    aggregate: int,
    assessment_failed: bool,
    status: RegistrationStatus,
    threshold: Optional[int] = None
) -> bool:
    """Fail closed: any failed stage blocks approval whatever the score."""
    if threshold is None:
        threshold = DEFAULT_THRESHOLD
    return (
        not assessment_failed
        and aggregate >= threshold
        and status == RegistrationStatus.PENDING
    )
