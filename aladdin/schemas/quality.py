from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, Field, field_validator

DIMENSION_NAMES: tuple[str, ...] = (
    "confidence",
    "completeness",
    "relevance",
    "consistency",
    "creativity",
    "technical",
)

BASE_DIMENSIONS: tuple[str, ...] = ("confidence", "completeness", "relevance", "consistency")


class QualityDecision(str, Enum):
    """Four-way gate outcome, ordered from most to least severe."""

    REJECT = "REJECT"
    RETRY = "RETRY"
    ACCEPT = "ACCEPT"
    EXEMPLARY = "EXEMPLARY"

    @property
    def rank(self) -> int:
        return _DECISION_RANK[self]

    def tier_distance(self, other: "QualityDecision") -> int:
        return abs(self.rank - other.rank)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, QualityDecision):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, QualityDecision):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, QualityDecision):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, QualityDecision):
            return NotImplemented
        return self.rank >= other.rank

    @classmethod
    def parse(cls, value: Any) -> "QualityDecision | None":
        if isinstance(value, QualityDecision):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


_DECISION_RANK = {
    QualityDecision.REJECT: 0,
    QualityDecision.RETRY: 1,
    QualityDecision.ACCEPT: 2,
    QualityDecision.EXEMPLARY: 3,
}


class AssessmentLevel(str, Enum):
    SPECIALIST = "specialist"
    DEPARTMENT = "department"
    OVERALL = "overall"


class QualityDimensions(BaseModel):
    """Per-dimension scores in [0, 100]; unused dimensions stay at 0."""

    model_config = ConfigDict(frozen=True)

    confidence: float = Field(0.0, ge=0.0, le=100.0)
    completeness: float = Field(0.0, ge=0.0, le=100.0)
    relevance: float = Field(0.0, ge=0.0, le=100.0)
    consistency: float = Field(0.0, ge=0.0, le=100.0)
    creativity: float = Field(0.0, ge=0.0, le=100.0)
    technical: float = Field(0.0, ge=0.0, le=100.0)

    def as_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in DIMENSION_NAMES}


class ScoringWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    confidence: float = Field(0.0, ge=0.0, le=1.0)
    completeness: float = Field(0.0, ge=0.0, le=1.0)
    relevance: float = Field(0.0, ge=0.0, le=1.0)
    consistency: float = Field(0.0, ge=0.0, le=1.0)
    creativity: float = Field(0.0, ge=0.0, le=1.0)
    technical: float = Field(0.0, ge=0.0, le=1.0)

    @property
    def total(self) -> float:
        return sum(self.as_dict().values())

    def as_dict(self) -> dict[str, float]:
        return {name: float(getattr(self, name)) for name in DIMENSION_NAMES}

    def restricted_to(self, dimensions: Iterable[str]) -> "ScoringWeights":
        """Zero every weight outside ``dimensions`` and renormalise the rest to sum to 1."""
        active = set(dimensions)
        kept = {name: weight for name, weight in self.as_dict().items() if name in active}
        total = sum(kept.values())
        if total <= 0:
            return ScoringWeights()
        return ScoringWeights(**{name: weight / total for name, weight in kept.items()})


class QualityAssessment(BaseModel):
    """Immutable outcome of one scoring operation."""

    model_config = ConfigDict(frozen=True)

    department: str
    level: AssessmentLevel = AssessmentLevel.SPECIALIST
    dimensions: QualityDimensions
    overall_score: float = Field(..., ge=0.0, le=100.0)
    decision: QualityDecision
    proposed_decision: QualityDecision | None = None
    confidence: float = Field(0.8, ge=0.0, le=1.0)
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    reasoning: str = ""
    assessed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def requires_attention(self) -> bool:
        return self.decision in (QualityDecision.REJECT, QualityDecision.RETRY)


class ConsistencyReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: float = Field(..., ge=0.0, le=100.0)
    inconsistencies: tuple[str, ...] = ()


def _coerce_text_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


class LLMAssessmentPayload(BaseModel):
    """Structured grading response as returned by the model, before clamping."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overall_score: float = Field(..., alias="overallScore")
    quality_score: float | None = Field(default=None, alias="qualityScore")
    relevance_score: float | None = Field(default=None, alias="relevanceScore")
    consistency_score: float | None = Field(default=None, alias="consistencyScore")
    completeness_score: float | None = Field(default=None, alias="completenessScore")
    creativity_score: float | None = Field(default=None, alias="creativityScore")
    technical_score: float | None = Field(default=None, alias="technicalScore")
    confidence: float = 0.8
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    decision: str | None = None
    reasoning: str = "No reasoning provided"

    @field_validator("issues", "suggestions", mode="before")
    @classmethod
    def _text_lists(cls, value: Any) -> list[str]:
        return _coerce_text_list(value)

    @field_validator("decision", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _reasoning(cls, value: Any) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "No reasoning provided"
        return str(value)

    @field_validator("confidence", mode="before")
    @classmethod
    def _default_confidence(cls, value: Any) -> Any:
        return 0.8 if value is None else value


class LLMConsistencyPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    consistency_score: float = Field(..., alias="consistencyScore")
    inconsistencies: list[str] = Field(default_factory=list)

    @field_validator("inconsistencies", mode="before")
    @classmethod
    def _text_lists(cls, value: Any) -> list[str]:
        return _coerce_text_list(value)


class LLMQuickCheckPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    overall_score: float = Field(..., alias="overallScore")
    decision: str | None = None

    @field_validator("decision", mode="before")
    @classmethod
    def _text(cls, value: Any) -> Any:
        if value is None or isinstance(value, str):
            return value
        return str(value)
