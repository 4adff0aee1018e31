"""Department-specific dimension weights used to compute overall quality scores."""

from __future__ import annotations

import math
from typing import Mapping

from ..core.logging import get_logger
from ..schemas.departments import Department, DepartmentCategory
from ..schemas.quality import BASE_DIMENSIONS, DIMENSION_NAMES, QualityDimensions, ScoringWeights

logger = get_logger(name=__name__)

WEIGHT_TOLERANCE = 0.01

DEPARTMENT_WEIGHTS: Mapping[Department, ScoringWeights] = {
    Department.STORY: ScoringWeights(
        creativity=0.25,
        consistency=0.25,
        completeness=0.20,
        relevance=0.15,
        technical=0.10,
        confidence=0.05,
    ),
    Department.CHARACTER: ScoringWeights(
        consistency=0.30,
        completeness=0.25,
        creativity=0.20,
        relevance=0.15,
        technical=0.05,
        confidence=0.05,
    ),
    Department.VISUAL: ScoringWeights(
        technical=0.30,
        creativity=0.25,
        consistency=0.20,
        completeness=0.15,
        relevance=0.05,
        confidence=0.05,
    ),
    Department.IMAGE_QUALITY: ScoringWeights(
        technical=0.30,
        consistency=0.30,
        completeness=0.15,
        creativity=0.10,
        relevance=0.10,
        confidence=0.05,
    ),
    Department.VIDEO: ScoringWeights(
        technical=0.35,
        completeness=0.25,
        consistency=0.20,
        creativity=0.10,
        relevance=0.05,
        confidence=0.05,
    ),
    Department.AUDIO: ScoringWeights(
        technical=0.40,
        completeness=0.25,
        consistency=0.20,
        creativity=0.10,
        relevance=0.03,
        confidence=0.02,
    ),
    Department.PRODUCTION: ScoringWeights(
        technical=0.30,
        completeness=0.30,
        relevance=0.20,
        consistency=0.15,
        creativity=0.03,
        confidence=0.02,
    ),
}

BALANCED_WEIGHTS = ScoringWeights(
    confidence=0.15,
    completeness=0.20,
    relevance=0.20,
    consistency=0.20,
    creativity=0.15,
    technical=0.10,
)


def weights_for(department_id: str | Department) -> ScoringWeights:
    department = Department.parse(department_id)
    if department is None:
        logger.warning("quality_weights_unknown_department", department=str(department_id))
        return BALANCED_WEIGHTS
    return DEPARTMENT_WEIGHTS[department]


def validate(weights: ScoringWeights | Mapping[str, float]) -> bool:
    values = weights.as_dict() if isinstance(weights, ScoringWeights) else dict(weights)
    return abs(sum(values.values()) - 1.0) < WEIGHT_TOLERANCE


def active_dimensions(department_id: str | Department) -> tuple[str, ...]:
    """Dimensions graded for a department: creative adds creativity, technical adds technical."""
    department = Department.parse(department_id)
    category = department.category if department is not None else None
    if category == DepartmentCategory.CREATIVE:
        return BASE_DIMENSIONS + ("creativity",)
    if category == DepartmentCategory.TECHNICAL:
        return BASE_DIMENSIONS + ("technical",)
    return BASE_DIMENSIONS


def weighted_score(
    dimensions: QualityDimensions | Mapping[str, float],
    weights: ScoringWeights,
) -> float:
    """Dot product of dimension scores and weights; missing dimensions count as 0."""
    values = dimensions.as_dict() if isinstance(dimensions, QualityDimensions) else dimensions
    total = 0.0
    for name in DIMENSION_NAMES:
        score = values.get(name)
        if score is None or math.isnan(score):
            continue
        total += float(score) * getattr(weights, name)
    return total


def department_overall(dimensions: QualityDimensions, department_id: str | Department) -> float:
    """Weighted overall score restricted to the department's active dimensions."""
    weights = weights_for(department_id).restricted_to(active_dimensions(department_id))
    return weighted_score(dimensions, weights)
