from __future__ import annotations

import asyncio
import time
from dataclasses import replace
from typing import Any, Iterable, Mapping, Sequence

from ..core import metrics
from ..core.config import OrchestrationSettings
from ..core.exceptions import DepartmentExecutionError, ScoringFailedError
from ..core.logging import get_logger
from ..quality.thresholds import ThresholdPolicy
from ..schemas.departments import (
    DepartmentNode,
    DepartmentReport,
    DepartmentStatus,
    SpecialistGrading,
    SpecialistVerdict,
)
from ..schemas.quality import AssessmentLevel, QualityAssessment, QualityDecision
from ..services.llm import ScoringClient
from ..services.scoring import QualityScorer
from .base import Specialist, SpecialistTask, build_specialists
from .contracts import DepartmentContract

logger = get_logger(name=__name__)


def _dedupe(items: Iterable[str]) -> list[str]:
    seen: dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return list(seen)


def relevance_weighted_mean(values: Sequence[tuple[float, float | None]]) -> float:
    """Mean of ``(value, relevance)`` pairs; falls back to a plain mean if any relevance is missing."""
    if not values:
        return 0.0
    relevances = [relevance for _, relevance in values]
    if all(relevance is not None for relevance in relevances):
        total_weight = sum(relevance for relevance in relevances if relevance is not None)
        if total_weight > 0:
            return sum(value * (relevance or 0.0) for value, relevance in values) / total_weight
    return sum(value for value, _ in values) / len(values)


class DepartmentHead:
    """Runs a department's specialists and reviews each output against the department gate."""

    def __init__(
        self,
        department: str,
        specialists: Sequence[Specialist],
        scorer: QualityScorer,
        *,
        max_revisions: int = 3,
        policy: ThresholdPolicy | None = None,
    ) -> None:
        self.department = department
        self._specialists = list(specialists)
        self._scorer = scorer
        self._max_revisions = max_revisions
        self._policy = policy or scorer.policy

    @classmethod
    def from_contract(
        cls,
        contract: DepartmentContract,
        *,
        client: ScoringClient,
        scorer: QualityScorer,
        settings: OrchestrationSettings,
    ) -> "DepartmentHead":
        max_revisions = (
            settings.specialist_max_revisions
            if settings.specialist_max_revisions is not None
            else contract.max_revisions
        )
        return cls(
            contract.department.value,
            build_specialists(contract, client, temperature=settings.specialist_temperature),
            scorer,
            max_revisions=max_revisions,
        )

    @property
    def specialists(self) -> list[Specialist]:
        return list(self._specialists)

    @property
    def max_revisions(self) -> int:
        return self._max_revisions

    async def run(
        self,
        node: DepartmentNode,
        *,
        prompt: str,
        request_id: str | None = None,
        project_context: Mapping[str, Any] | None = None,
        upstream: Mapping[str, DepartmentReport] | None = None,
    ) -> DepartmentReport:
        if not self._specialists:
            raise DepartmentExecutionError(f"No specialists registered for department '{self.department}'")

        start = time.perf_counter()
        task = SpecialistTask(
            department=self.department,
            prompt=prompt,
            request_id=request_id,
            project_context=dict(project_context or {}),
            upstream={name: report.outputs() for name, report in (upstream or {}).items()},
        )
        gradings = list(
            await asyncio.gather(*(self._run_specialist(specialist, task) for specialist in self._specialists))
        )
        report = self._build_report(node, gradings)
        report.duration_ms = (time.perf_counter() - start) * 1000
        metrics.record_department_run(
            department=self.department,
            status=report.status.value,
            latency=report.duration_ms / 1000,
        )
        logger.info(
            "department_reviewed",
            department=self.department,
            status=report.status.value,
            quality=report.department_quality,
            accepted=len(report.accepted_gradings),
            total=len(gradings),
        )
        return report

    async def _run_specialist(self, specialist: Specialist, base_task: SpecialistTask) -> SpecialistGrading:
        task = base_task
        attempt = 0
        while True:
            attempt += 1
            try:
                output = await specialist.produce(task)
            except Exception as exc:
                logger.warning(
                    "specialist_failed",
                    department=self.department,
                    specialist=specialist.name,
                    attempt=attempt,
                    error=str(exc),
                )
                return self._grading(
                    specialist,
                    SpecialistVerdict.DISCARD,
                    attempts=attempt,
                    issues=[f"{specialist.name} failed: {exc}"],
                )

            try:
                assessment = await self._scorer.assess(
                    output,
                    self.department,
                    task=base_task.prompt,
                    project_context=base_task.project_context,
                    level=AssessmentLevel.SPECIALIST,
                )
            except ScoringFailedError as exc:
                logger.warning(
                    "specialist_scoring_failed",
                    department=self.department,
                    specialist=specialist.name,
                    error=str(exc),
                )
                return self._grading(
                    specialist,
                    SpecialistVerdict.DISCARD,
                    attempts=attempt,
                    output=output,
                    issues=[f"{specialist.name} could not be graded: {exc}"],
                )

            review = self._policy.decide(
                assessment.overall_score,
                assessment.dimensions.consistency,
                AssessmentLevel.DEPARTMENT,
            )
            decision = min(assessment.decision, review)
            if decision >= QualityDecision.ACCEPT:
                return self._grading(specialist, SpecialistVerdict.ACCEPT, attempts=attempt, output=output, assessment=assessment)
            if decision == QualityDecision.REJECT:
                return self._grading(specialist, SpecialistVerdict.DISCARD, attempts=attempt, output=output, assessment=assessment)
            if attempt > self._max_revisions:
                return self._grading(
                    specialist,
                    SpecialistVerdict.REVISE,
                    attempts=attempt,
                    output=output,
                    assessment=assessment,
                    issues=[f"{specialist.name} still needs revision after {self._max_revisions} revisions"],
                )
            logger.info(
                "specialist_revision_requested",
                department=self.department,
                specialist=specialist.name,
                attempt=attempt,
                score=assessment.overall_score,
            )
            task = replace(task, attempt=attempt + 1, previous_output=output, feedback=assessment)

    def _grading(
        self,
        specialist: Specialist,
        verdict: SpecialistVerdict,
        *,
        attempts: int,
        output: str | None = None,
        assessment: QualityAssessment | None = None,
        issues: list[str] | None = None,
    ) -> SpecialistGrading:
        metrics.increment_specialist_verdict(department=self.department, verdict=verdict.value)
        return SpecialistGrading(
            specialist=specialist.name,
            relevance=specialist.relevance,
            verdict=verdict,
            attempts=attempts,
            assessment=assessment,
            output=output,
            issues=issues or [],
        )

    def _build_report(self, node: DepartmentNode, gradings: list[SpecialistGrading]) -> DepartmentReport:
        accepted = [grading for grading in gradings if grading.verdict == SpecialistVerdict.ACCEPT]
        issues = _dedupe(
            [issue for grading in gradings for issue in grading.issues]
            + [
                issue
                for grading in gradings
                if grading.assessment is not None
                for issue in grading.assessment.issues
            ]
        )
        suggestions = _dedupe(
            suggestion
            for grading in gradings
            if grading.assessment is not None
            for suggestion in grading.assessment.suggestions
        )

        if not accepted:
            issues.append(f"No {self.department} specialist output met the department threshold")
            return DepartmentReport(
                department=self.department,
                relevance=node.relevance,
                role=node.role,
                status=DepartmentStatus.PENDING,
                gradings=gradings,
                decision=QualityDecision.REJECT,
                issues=issues,
                suggestions=suggestions,
            )

        quality = relevance_weighted_mean([(grading.overall_score, grading.relevance) for grading in accepted])
        consistency = relevance_weighted_mean(
            [
                (grading.assessment.dimensions.consistency if grading.assessment else 0.0, grading.relevance)
                for grading in accepted
            ]
        )
        return DepartmentReport(
            department=self.department,
            relevance=node.relevance,
            role=node.role,
            status=DepartmentStatus.COMPLETE,
            gradings=gradings,
            department_quality=round(quality / 100, 4),
            consistency=round(consistency / 100, 4),
            decision=self._policy.decide(quality, consistency, AssessmentLevel.DEPARTMENT),
            issues=issues,
            suggestions=suggestions,
        )
