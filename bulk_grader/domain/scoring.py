from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from bulk_grader.lib.records.types import GradingScale

DEFAULT_SCALE_MAX = 100.0


@dataclass(frozen=True)
class CriteriaScore:
    name: str
    score: float
    max_score: float
    weight: float


def scale_max(scale: GradingScale | None) -> float:
    if scale is None or scale.max_score is None or scale.max_score <= 0:
        return DEFAULT_SCALE_MAX
    return scale.max_score


def deterministic_overall_score(*, criteria: Sequence[CriteriaScore], scale: GradingScale | None) -> float | None:
    """Weighted mean of per-criterion ratios projected onto the rubric scale.

    Returns None when no criterion carries positive weight, which leaves the
    evaluation without a score instead of inventing one.
    """
    weighted_sum = 0.0
    weights = 0.0
    for item in criteria:
        if item.max_score <= 0:
            continue
        ratio = max(0.0, min(1.0, item.score / item.max_score))
        bounded_weight = max(0.0, item.weight)
        weighted_sum += ratio * bounded_weight
        weights += bounded_weight

    if weights == 0:
        return None

    return round(weighted_sum / weights * scale_max(scale), 1)


def letter_grade_for(*, score: float, scale: GradingScale | None) -> str | None:
    if scale is None or scale.type != "letter":
        return None
    for grade in scale.letter_grades:
        if grade.min_score <= score <= grade.max_score:
            return grade.label
    return None


def band_label_for(*, score: float, scale: GradingScale | None) -> str | None:
    if scale is None or scale.type != "bands":
        return None
    for band in scale.bands:
        if band.min_score <= score <= band.max_score:
            return band.label
    return None
