from __future__ import annotations

from statistics import fmean
from typing import Any, Sequence

from ..core.config import OrchestrationSettings
from ..core.exceptions import BrainUnavailableError
from ..core.logging import get_logger
from ..quality.thresholds import DEFAULT_POLICY, ThresholdPolicy, clamp_unit
from ..schemas.departments import DepartmentReport, DepartmentRole, DepartmentStatus
from ..schemas.orchestrator import OrchestratorResult, Recommendation
from ..schemas.quality import AssessmentLevel
from ..services.brain import BrainClient, ValidationResult

logger = get_logger(name=__name__)


def compute_completeness(reports: Sequence[DepartmentReport]) -> float:
    """Fraction of selected departments that reached ``complete``."""
    selected = [report for report in reports if report.is_selected]
    if not selected:
        return 0.0
    complete = sum(1 for report in selected if report.status == DepartmentStatus.COMPLETE)
    return complete / len(selected)


def compute_overall_quality(reports: Sequence[DepartmentReport], *, primary_share: float = 0.5) -> float:
    """Primary department gets ``primary_share``; supporting ones split the rest by relevance.

    Selected departments that did not complete contribute a quality of 0.
    """
    selected = [report for report in reports if report.is_selected]
    if not selected:
        return 0.0
    primary = [report for report in selected if report.role == DepartmentRole.PRIMARY]
    supporting = [report for report in selected if report.role != DepartmentRole.PRIMARY]

    if not primary:
        return _relevance_mean(supporting)
    primary_quality = fmean(report.department_quality for report in primary)
    if not supporting:
        return clamp_unit(primary_quality)
    return clamp_unit(primary_share * primary_quality + (1 - primary_share) * _relevance_mean(supporting))


def _relevance_mean(reports: Sequence[DepartmentReport]) -> float:
    total = sum(report.relevance for report in reports)
    if total <= 0:
        return fmean(report.department_quality for report in reports)
    return sum(report.department_quality * report.relevance for report in reports) / total


def local_consistency(reports: Sequence[DepartmentReport]) -> float:
    values = [
        report.consistency
        for report in reports
        if report.status == DepartmentStatus.COMPLETE and report.consistency is not None
    ]
    return fmean(values) if values else 0.0


def recommend(
    overall_quality: float,
    consistency: float,
    settings: OrchestrationSettings | None = None,
) -> Recommendation:
    """Ingest when quality and consistency both clear the bar; modify anything salvageable."""
    settings = settings or OrchestrationSettings()
    if overall_quality >= settings.ingest_threshold and consistency >= settings.consistency_threshold:
        return Recommendation.INGEST
    if overall_quality >= settings.modify_threshold:
        return Recommendation.MODIFY
    return Recommendation.DISCARD


class ResultAggregator:
    """Merges department reports into the request-level ``OrchestratorResult``."""

    def __init__(
        self,
        brain: BrainClient | None = None,
        *,
        settings: OrchestrationSettings | None = None,
        policy: ThresholdPolicy = DEFAULT_POLICY,
    ) -> None:
        self._brain = brain
        self._settings = settings or OrchestrationSettings()
        self._policy = policy

    async def aggregate(
        self,
        reports: Sequence[DepartmentReport],
        *,
        request_id: str | None = None,
        project_id: str | None = None,
        content_type: str = "production",
    ) -> OrchestratorResult:
        completeness = compute_completeness(reports)
        overall_quality = round(compute_overall_quality(reports, primary_share=self._settings.primary_share), 4)

        issues = list(dict.fromkeys(issue for report in reports for issue in report.issues))
        suggestions = list(dict.fromkeys(item for report in reports for item in report.suggestions))

        validation = await self._validate(reports, project_id, content_type)
        if validation is not None:
            consistency = clamp_unit(validation.coherence_score)
            source = "brain"
            issues.extend(
                f"Contradiction ({item.severity}): {item.description}"
                for item in validation.contradictions
                if item.description
            )
            suggestions.extend(item for item in validation.suggestions if item not in suggestions)
        else:
            consistency = local_consistency(reports)
            source = "departments"
        consistency = round(consistency, 4)

        if not any(report.is_selected for report in reports):
            issues.append("No department was relevant to the request")

        recommendation = recommend(overall_quality, consistency, self._settings)
        decision = self._policy.decide(overall_quality * 100, consistency * 100, AssessmentLevel.OVERALL)
        logger.info(
            "results_aggregated",
            request_id=request_id,
            completeness=round(completeness, 4),
            overall_quality=overall_quality,
            consistency=consistency,
            consistency_source=source,
            recommendation=recommendation.value,
            decision=decision.value,
        )
        return OrchestratorResult(
            request_id=request_id,
            departments=tuple(reports),
            consistency=consistency,
            consistency_source=source,
            brain_validated=validation.valid if validation is not None else None,
            brain_quality_score=clamp_unit(validation.quality_score) if validation is not None else None,
            completeness=round(completeness, 4),
            overall_quality=overall_quality,
            decision=decision,
            recommendation=recommendation,
            issues=tuple(issues),
            suggestions=tuple(suggestions),
        )

    async def _validate(
        self,
        reports: Sequence[DepartmentReport],
        project_id: str | None,
        content_type: str,
    ) -> ValidationResult | None:
        if self._brain is None or project_id is None:
            return None
        content: dict[str, Any] = {
            report.department: report.outputs()
            for report in reports
            if report.status == DepartmentStatus.COMPLETE
        }
        if not content:
            return None
        try:
            return await self._brain.validate_content(content, content_type, project_id)
        except BrainUnavailableError as exc:
            logger.warning("brain_consistency_unavailable", project_id=project_id, error=str(exc))
            return None
