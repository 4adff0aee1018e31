from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from .quality import QualityAssessment, QualityDecision


class DepartmentCategory(str, Enum):
    CREATIVE = "creative"
    TECHNICAL = "technical"
    OPERATIONAL = "operational"


class Department(str, Enum):
    STORY = "story"
    CHARACTER = "character"
    VISUAL = "visual"
    IMAGE_QUALITY = "image_quality"
    VIDEO = "video"
    AUDIO = "audio"
    PRODUCTION = "production"

    @property
    def category(self) -> DepartmentCategory:
        return _CATEGORIES[self]

    @classmethod
    def parse(cls, value: "str | Department") -> "Department | None":
        """Case-insensitive lookup; returns ``None`` for departments outside the catalog."""
        if isinstance(value, Department):
            return value
        normalised = str(value).strip().lower().replace("-", "_").replace(" ", "_")
        try:
            return cls(normalised)
        except ValueError:
            return None


_CATEGORIES: dict[Department, DepartmentCategory] = {
    Department.STORY: DepartmentCategory.CREATIVE,
    Department.CHARACTER: DepartmentCategory.CREATIVE,
    Department.VISUAL: DepartmentCategory.TECHNICAL,
    Department.IMAGE_QUALITY: DepartmentCategory.TECHNICAL,
    Department.VIDEO: DepartmentCategory.TECHNICAL,
    Department.AUDIO: DepartmentCategory.TECHNICAL,
    Department.PRODUCTION: DepartmentCategory.OPERATIONAL,
}


def department_category(department_id: str) -> DepartmentCategory | None:
    department = Department.parse(department_id)
    return department.category if department is not None else None


class ExecutionState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"
    SKIPPED = "skipped"


class DepartmentStatus(str, Enum):
    NOT_RELEVANT = "not_relevant"
    COMPLETE = "complete"
    PENDING = "pending"
    SKIPPED = "skipped"


class DepartmentRole(str, Enum):
    PRIMARY = "primary"
    SUPPORTING = "supporting"
    NOT_RELEVANT = "not_relevant"


class SpecialistVerdict(str, Enum):
    ACCEPT = "accept"
    REVISE = "revise"
    DISCARD = "discard"


@dataclass(slots=True)
class DepartmentNode:
    department_id: str
    relevance: float = 0.0
    dependencies: tuple[str, ...] = ()
    role: DepartmentRole = DepartmentRole.SUPPORTING
    state: ExecutionState = ExecutionState.PENDING
    metadata: dict[str, Any] = field(default_factory=dict)


class SpecialistGrading(BaseModel):
    specialist: str
    relevance: float | None = Field(default=None, ge=0.0, le=1.0)
    verdict: SpecialistVerdict
    attempts: int = Field(1, ge=0)
    assessment: QualityAssessment | None = None
    output: str | None = None
    issues: list[str] = Field(default_factory=list)

    @property
    def overall_score(self) -> float:
        return self.assessment.overall_score if self.assessment is not None else 0.0


class DepartmentReport(BaseModel):
    department: str
    relevance: float = Field(0.0, ge=0.0, le=1.0)
    role: DepartmentRole = DepartmentRole.NOT_RELEVANT
    status: DepartmentStatus = DepartmentStatus.NOT_RELEVANT
    gradings: list[SpecialistGrading] = Field(default_factory=list)
    department_quality: float = Field(0.0, ge=0.0, le=1.0)
    consistency: float | None = Field(default=None, ge=0.0, le=1.0)
    decision: QualityDecision | None = None
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def is_selected(self) -> bool:
        return self.status != DepartmentStatus.NOT_RELEVANT

    @property
    def accepted_gradings(self) -> list[SpecialistGrading]:
        return [grading for grading in self.gradings if grading.verdict == SpecialistVerdict.ACCEPT]

    def outputs(self) -> dict[str, str]:
        return {
            grading.specialist: grading.output
            for grading in self.accepted_gradings
            if grading.output is not None
        }

    @classmethod
    def not_relevant(cls, department: str, relevance: float = 0.0) -> "DepartmentReport":
        return cls(department=department, relevance=relevance)
