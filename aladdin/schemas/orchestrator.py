from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from .departments import DepartmentReport, DepartmentRole
from .quality import QualityDecision


class ProductionRequest(BaseModel):
    request_id: str = Field(default_factory=lambda: uuid4().hex)
    prompt: str = Field(..., min_length=1)
    project_id: str | None = None
    project_slug: str | None = None
    conversation_id: str | None = None
    preferred_departments: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RoutedDepartment(BaseModel):
    model_config = ConfigDict(frozen=True)

    department: str
    relevance: float = Field(..., ge=0.0, le=1.0)
    role: DepartmentRole
    matched_keywords: tuple[str, ...] = ()


class Recommendation(str, Enum):
    INGEST = "ingest"
    MODIFY = "modify"
    DISCARD = "discard"


class QualityGate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    threshold: float
    score: float = Field(..., ge=0.0, le=1.0)
    passed: bool
    issues: tuple[str, ...] = ()


class GateReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    passed: bool
    score: float = Field(..., ge=0.0, le=1.0)
    gates: tuple[QualityGate, ...] = ()
    failures: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def failed_gates(self) -> list[QualityGate]:
        return [gate for gate in self.gates if not gate.passed]


class OrchestratorResult(BaseModel):
    """Terminal aggregate for one request; never mutated once built."""

    model_config = ConfigDict(frozen=True)

    request_id: str | None = None
    departments: tuple[DepartmentReport, ...] = ()
    consistency: float = Field(0.0, ge=0.0, le=1.0)
    consistency_source: str = "departments"
    brain_validated: bool | None = None
    brain_quality_score: float | None = Field(default=None, ge=0.0, le=1.0)
    completeness: float = Field(0.0, ge=0.0, le=1.0)
    overall_quality: float = Field(0.0, ge=0.0, le=1.0)
    decision: QualityDecision = QualityDecision.REJECT
    recommendation: Recommendation = Recommendation.DISCARD
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    gate_report: GateReport | None = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def report_for(self, department: str) -> DepartmentReport | None:
        for report in self.departments:
            if report.department == department:
                return report
        return None

    @property
    def selected(self) -> list[DepartmentReport]:
        return [report for report in self.departments if report.is_selected]
