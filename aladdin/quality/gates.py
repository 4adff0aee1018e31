"""
Quality Validation Gates

Post-aggregation checks over a finished ``OrchestratorResult``: one gate per
selected department plus one gate for the orchestration as a whole. Each gate
starts from the measured quality and subtracts a fixed penalty per failed check.
"""

from __future__ import annotations

from ..core.logging import get_logger
from ..schemas.departments import DepartmentReport, DepartmentStatus
from ..schemas.orchestrator import GateReport, OrchestratorResult, QualityGate, Recommendation
from ..schemas.quality import QualityDecision
from .thresholds import clamp_unit

logger = get_logger(name=__name__)

DEPARTMENT_GATE_THRESHOLD = 0.60
ORCHESTRATOR_GATE_THRESHOLD = 0.75
CRITICAL_GATE_SCORE = 0.5


def validate_department_quality(report: DepartmentReport, threshold: float = DEPARTMENT_GATE_THRESHOLD) -> QualityGate:
    issues: list[str] = []
    score = report.department_quality

    if report.relevance < 0.5:
        issues.append("Low relevance to request")
        score -= 0.1

    if report.status != DepartmentStatus.COMPLETE:
        issues.append(f"Department finished with status '{report.status.value}'")
    elif not report.accepted_gradings:
        issues.append("No accepted outputs from specialists")
        score -= 0.3

    rejected = [
        grading.specialist
        for grading in report.gradings
        if grading.assessment is not None and grading.assessment.decision == QualityDecision.REJECT
    ]
    if rejected:
        issues.append(f"Rejected specialist output: {', '.join(rejected)}")

    issues.extend(report.issues)
    score = clamp_unit(score)
    return QualityGate(
        name=f"{report.department} Department Quality",
        threshold=threshold,
        score=score,
        passed=score >= threshold,
        issues=tuple(issues),
    )


def validate_orchestrator_quality(result: OrchestratorResult, threshold: float = ORCHESTRATOR_GATE_THRESHOLD) -> QualityGate:
    issues: list[str] = []
    score = result.overall_quality

    if result.completeness < 0.8:
        issues.append("Incomplete department coverage")
        score -= 0.1

    if result.consistency < 0.7:
        issues.append("Low cross-department consistency")
        score -= 0.1

    if result.brain_validated is None:
        issues.append("Brain validation unavailable")
    elif not result.brain_validated:
        issues.append("Brain validation failed")
        score -= 0.2
    elif result.brain_quality_score is not None and result.brain_quality_score < 0.7:
        issues.append("Low brain quality score")
        score -= 0.1

    score = clamp_unit(score)
    return QualityGate(
        name="Overall Orchestration Quality",
        threshold=threshold,
        score=score,
        passed=score >= threshold,
        issues=tuple(issues),
    )


def run_all_quality_gates(result: OrchestratorResult) -> GateReport:
    gates = [validate_department_quality(report) for report in result.selected]
    gates.append(validate_orchestrator_quality(result))

    failures = [f"{gate.name}: {'; '.join(gate.issues) or 'score below threshold'}" for gate in gates if not gate.passed]
    warnings = [issue for gate in gates if gate.passed for issue in gate.issues]
    report = GateReport(
        passed=not failures,
        score=result.overall_quality,
        gates=tuple(gates),
        failures=tuple(failures),
        warnings=tuple(warnings),
    )
    logger.info(
        "quality_gates_evaluated",
        request_id=result.request_id,
        passed=report.passed,
        failed=[gate.name for gate in report.failed_gates],
    )
    return report


def quality_recommendation(report: GateReport) -> tuple[Recommendation, str]:
    failed = report.failed_gates
    if not failed:
        return Recommendation.INGEST, "All quality gates passed"

    critical = [gate for gate in failed if gate.score < CRITICAL_GATE_SCORE]
    if critical:
        return Recommendation.DISCARD, f"Critical quality issues: {', '.join(gate.name for gate in critical)}"

    details = ", ".join("; ".join(gate.issues) or gate.name for gate in failed)
    return Recommendation.MODIFY, f"Quality issues need addressing: {details}"
