import pytest
import structlog

from aladdin.agents.department_head import DepartmentHead
from aladdin.core.config import Settings
from aladdin.core.exceptions import DependencyCycleError
from aladdin.orchestration import ProductionOrchestrator, ResultAggregator
from aladdin.schemas.departments import Department, DepartmentRole, DepartmentStatus
from aladdin.schemas.orchestrator import ProductionRequest, Recommendation
from aladdin.schemas.quality import QualityDecision
from aladdin.services.brain import ValidationResult
from aladdin.services.context_store import ContextGatherer
from tests.helpers.stubs import StubBrain, StubQualityScorer, StubSpecialist

VILLAIN_PROMPT = "Design a villain character with a tragic backstory and strong motivation"


class _Resource:
    def __init__(self):
        self.closed = 0

    async def aclose(self):
        self.closed += 1


def _heads(scorer, **specialists):
    return {
        department: DepartmentHead(department, [specialist], scorer)
        for department, specialist in specialists.items()
    }


@pytest.mark.asyncio
async def test_request_runs_relevant_departments_in_dependency_order():
    creator = StubSpecialist("character_creator", ["A cunning villain"], relevance=1.0)
    artist = StubSpecialist("concept_artist", ["Moody sketch"])
    scorer = StubQualityScorer({"A cunning villain": 92, "Moody sketch": 86})
    orchestrator = ProductionOrchestrator(heads=_heads(scorer, character=creator, visual=artist))

    result = await orchestrator.handle_request(ProductionRequest(prompt=VILLAIN_PROMPT, request_id="req-1"))

    assert result.request_id == "req-1"
    assert {report.department for report in result.departments} == {department.value for department in Department}
    assert [report.department for report in result.selected] == ["character", "visual"]
    assert result.report_for("story").status == DepartmentStatus.NOT_RELEVANT
    assert result.report_for("character").role == DepartmentRole.PRIMARY
    assert artist.tasks[0].upstream == {"character": {"character_creator": "A cunning villain"}}
    assert result.completeness == 1.0
    assert result.overall_quality == pytest.approx(0.89)
    assert result.consistency == pytest.approx(0.89)
    assert result.decision == QualityDecision.ACCEPT
    assert result.recommendation == Recommendation.INGEST
    assert result.gate_report is not None and result.gate_report.passed
    assert "Brain validation unavailable" in result.gate_report.warnings


@pytest.mark.asyncio
async def test_dependency_cycle_fails_before_any_department_runs():
    creator = StubSpecialist("character_creator", ["A cunning villain"])
    artist = StubSpecialist("concept_artist", ["Moody sketch"])
    orchestrator = ProductionOrchestrator(
        heads=_heads(StubQualityScorer(), character=creator, visual=artist),
        dependencies={"character": ["visual"], "visual": ["character"]},
    )

    with pytest.raises(DependencyCycleError):
        await orchestrator.handle_request(ProductionRequest(prompt=VILLAIN_PROMPT))

    assert creator.tasks == []
    assert artist.tasks == []


@pytest.mark.asyncio
async def test_missing_department_head_is_folded_into_the_report():
    creator = StubSpecialist("character_creator", ["A cunning villain"])
    orchestrator = ProductionOrchestrator(heads=_heads(StubQualityScorer({"A cunning villain": 92}), character=creator))

    result = await orchestrator.handle_request(ProductionRequest(prompt=VILLAIN_PROMPT))

    visual = result.report_for("visual")
    assert visual.status == DepartmentStatus.PENDING
    assert visual.issues == ["visual department failed: No department head registered for 'visual'"]
    assert result.completeness == pytest.approx(0.5)
    assert result.overall_quality == pytest.approx(0.46)
    assert result.recommendation == Recommendation.DISCARD


@pytest.mark.asyncio
async def test_project_context_and_brain_validation_flow_through():
    creator = StubSpecialist("character_creator", ["A cunning villain"], relevance=1.0)
    artist = StubSpecialist("concept_artist", ["Moody sketch"])
    scorer = StubQualityScorer({"A cunning villain": 92, "Moody sketch": 86})
    brain = StubBrain(ValidationResult(valid=False, quality_score=0.9, coherence_score=0.95))
    orchestrator = ProductionOrchestrator(
        heads=_heads(scorer, character=creator, visual=artist),
        aggregator=ResultAggregator(brain),
        gatherer=ContextGatherer(None),
    )

    result = await orchestrator.handle_request(ProductionRequest(prompt=VILLAIN_PROMPT, project_id="p1"))

    assert creator.tasks[0].project_context == {"project": {"id": "p1", "name": "Unknown Project", "slug": "p1"}}
    assert brain.calls[0]["project_id"] == "p1"
    assert result.consistency_source == "brain"
    assert result.brain_validated is False
    assert result.recommendation == Recommendation.INGEST
    assert not result.gate_report.passed
    assert result.gate_report.failures == ("Overall Orchestration Quality: Brain validation failed",)


@pytest.mark.asyncio
async def test_lifecycle_closes_resources_once():
    resource = _Resource()
    orchestrator = ProductionOrchestrator(heads={}, resources=[resource])

    async with orchestrator.lifecycle() as active:
        assert active is orchestrator

    await orchestrator.aclose()
    assert resource.closed == 1


@pytest.mark.asyncio
async def test_from_settings_registers_every_department():
    settings = Settings(llm={"api_key": "sk-test"}, cache={"backend": "memory"})

    async with ProductionOrchestrator.from_settings(settings).lifecycle() as orchestrator:
        assert sorted(orchestrator.departments) == sorted(department.value for department in Department)


class _ContextRecordingSpecialist(StubSpecialist):
    def __init__(self, name, outputs):
        super().__init__(name, outputs)
        self.log_context = []

    async def produce(self, task):
        self.log_context.append(structlog.contextvars.get_contextvars())
        return await super().produce(task)


@pytest.mark.asyncio
async def test_request_identifiers_are_bound_to_department_logs():
    creator = _ContextRecordingSpecialist("character_creator", ["A cunning villain"])
    orchestrator = ProductionOrchestrator(
        heads=_heads(StubQualityScorer(), character=creator, visual=StubSpecialist("concept_artist", ["Sketch"]))
    )

    await orchestrator.handle_request(ProductionRequest(prompt=VILLAIN_PROMPT, request_id="req-9", project_id="p9"))

    assert creator.log_context == [{"request_id": "req-9", "project_id": "p9"}]
    assert structlog.contextvars.get_contextvars() == {}
