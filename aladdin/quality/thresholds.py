from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping

from ..schemas.quality import AssessmentLevel, QualityDecision


@dataclass(frozen=True, slots=True)
class QualityThresholds:
    minimum: float
    acceptable: float
    good: float
    excellent: float

    def __post_init__(self) -> None:
        if not (self.minimum < self.acceptable < self.good < self.excellent):
            raise ValueError("Quality thresholds must be strictly ascending")


@dataclass(frozen=True, slots=True)
class ConsistencyThresholds:
    minimum: float = 60.0
    acceptable: float = 75.0
    good: float = 85.0


_DEFAULT_LEVEL_THRESHOLDS = QualityThresholds(minimum=60.0, acceptable=75.0, good=90.0, excellent=95.0)

QUALITY_THRESHOLDS: Mapping[AssessmentLevel, QualityThresholds] = {
    AssessmentLevel.SPECIALIST: _DEFAULT_LEVEL_THRESHOLDS,
    AssessmentLevel.DEPARTMENT: _DEFAULT_LEVEL_THRESHOLDS,
    AssessmentLevel.OVERALL: _DEFAULT_LEVEL_THRESHOLDS,
}

CONSISTENCY_THRESHOLDS = ConsistencyThresholds()

RECOMMENDED_ACTIONS: Mapping[QualityDecision, str] = {
    QualityDecision.REJECT: (
        "Critical quality issues detected. Output cannot be used. Regenerate with different approach."
    ),
    QualityDecision.RETRY: "Quality below acceptable threshold. Request revision with specific improvements.",
    QualityDecision.ACCEPT: (
        "Quality meets standards. Output approved for use. Optional minor improvements suggested."
    ),
    QualityDecision.EXEMPLARY: (
        "Exceptional quality achieved. Output exceeds expectations. Can be used as example."
    ),
}


@dataclass(frozen=True, slots=True)
class ThresholdPolicy:
    """Maps (overall score, consistency score, level) onto a quality decision.

    The REJECT check runs first and wins over every other signal; a consistency
    failure can only downgrade an otherwise passing score to RETRY.
    """

    levels: Mapping[AssessmentLevel, QualityThresholds] = field(default_factory=lambda: dict(QUALITY_THRESHOLDS))
    consistency: ConsistencyThresholds = CONSISTENCY_THRESHOLDS

    def thresholds(self, level: AssessmentLevel | str = AssessmentLevel.SPECIALIST) -> QualityThresholds:
        return self.levels[AssessmentLevel(level)]

    def decide(
        self,
        overall_score: float,
        consistency_score: float,
        level: AssessmentLevel | str = AssessmentLevel.SPECIALIST,
    ) -> QualityDecision:
        thresholds = self.thresholds(level)
        if overall_score < thresholds.minimum:
            return QualityDecision.REJECT
        if overall_score < thresholds.acceptable or consistency_score < self.consistency.minimum:
            return QualityDecision.RETRY
        if overall_score >= thresholds.good and consistency_score >= self.consistency.good:
            return QualityDecision.EXEMPLARY
        return QualityDecision.ACCEPT

    def requires_attention(
        self,
        overall_score: float,
        consistency_score: float,
        level: AssessmentLevel | str = AssessmentLevel.SPECIALIST,
    ) -> bool:
        decision = self.decide(overall_score, consistency_score, level)
        return decision in (QualityDecision.REJECT, QualityDecision.RETRY)

    def score_label(self, score: float, level: AssessmentLevel | str = AssessmentLevel.SPECIALIST) -> str:
        thresholds = self.thresholds(level)
        if score < thresholds.minimum:
            return "Below Minimum"
        if score < thresholds.acceptable:
            return "Needs Improvement"
        if score < thresholds.good:
            return "Acceptable"
        if score < thresholds.excellent:
            return "Good"
        return "Excellent"


DEFAULT_POLICY = ThresholdPolicy()


def decide(
    overall_score: float,
    consistency_score: float,
    level: AssessmentLevel | str = AssessmentLevel.SPECIALIST,
) -> QualityDecision:
    return DEFAULT_POLICY.decide(overall_score, consistency_score, level)


def requires_attention(
    overall_score: float,
    consistency_score: float,
    level: AssessmentLevel | str = AssessmentLevel.SPECIALIST,
) -> bool:
    return DEFAULT_POLICY.requires_attention(overall_score, consistency_score, level)


def score_label(score: float, level: AssessmentLevel | str = AssessmentLevel.SPECIALIST) -> str:
    return DEFAULT_POLICY.score_label(score, level)


def recommended_action(decision: QualityDecision | str) -> str:
    return RECOMMENDED_ACTIONS[QualityDecision(decision)]


def validate_score(score: float) -> bool:
    return not math.isnan(score) and 0.0 <= score <= 100.0


def clamp_score(score: float) -> float:
    """Clamp into [0, 100]; NaN collapses to 0."""
    if math.isnan(score):
        return 0.0
    return max(0.0, min(100.0, float(score)))


def clamp_unit(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, float(value)))
