from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Mapping, Protocol, Sequence

from ..agents.contracts import list_contracts
from ..agents.department_head import DepartmentHead
from ..core import metrics
from ..core.config import Settings, get_settings
from ..core.exceptions import DepartmentExecutionError
from ..core.logging import configure_logging, get_logger, request_log_context
from ..quality.gates import quality_recommendation, run_all_quality_gates
from ..schemas.departments import DepartmentNode, DepartmentReport, DepartmentRole
from ..schemas.orchestrator import OrchestratorResult, ProductionRequest
from ..services.brain import BrainClient
from ..services.cache import build_cache
from ..services.context_store import ContextGatherer, ContextStoreClient
from ..services.llm import ScoringClient
from ..services.scoring import QualityScorer
from .aggregator import ResultAggregator
from .parallel_executor import ExecutionListener, ParallelExecutor
from .planner import build_plan
from .routing import DepartmentRouter

logger = get_logger(name=__name__)


class _Closeable(Protocol):
    async def aclose(self) -> None:
        ...


class ProductionOrchestrator:
    """Routes a request to departments, runs them tier by tier and gates the merged result."""

    def __init__(
        self,
        *,
        heads: Mapping[str, DepartmentHead],
        router: DepartmentRouter | None = None,
        executor: ParallelExecutor | None = None,
        aggregator: ResultAggregator | None = None,
        gatherer: ContextGatherer | None = None,
        dependencies: Mapping[str, Sequence[str]] | None = None,
        resources: Sequence[_Closeable] = (),
    ) -> None:
        self._heads = dict(heads)
        self._router = router or DepartmentRouter()
        self._executor = executor or ParallelExecutor()
        self._aggregator = aggregator or ResultAggregator()
        self._gatherer = gatherer
        self._dependencies = dependencies
        self._resources = list(resources)
        self._closed = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        on_event: ExecutionListener | None = None,
    ) -> "ProductionOrchestrator":
        settings = settings or get_settings()
        configure_logging(settings.observability.log_level)
        if settings.observability.prometheus_enabled and settings.observability.metrics_port is not None:
            metrics.start_metrics_server(settings.observability.metrics_port)
        client = ScoringClient.from_settings(settings)
        cache = build_cache(settings.cache)
        scorer = QualityScorer(client, settings=settings.quality, cache=cache)
        brain = BrainClient(settings.brain) if settings.brain.enabled else None
        store = ContextStoreClient(settings.context_store) if settings.context_store.enabled else None
        gatherer = ContextGatherer(
            store,
            cache=cache,
            brain=brain,
            cache_ttl_seconds=settings.context_store.cache_ttl_seconds,
        )
        heads = {
            contract.department.value: DepartmentHead.from_contract(
                contract,
                client=client,
                scorer=scorer,
                settings=settings.orchestration,
            )
            for contract in list_contracts()
        }
        resources: list[Any] = [client, cache, brain, store]
        return cls(
            heads=heads,
            router=DepartmentRouter.from_settings(settings.routing),
            executor=ParallelExecutor(
                max_concurrency=settings.orchestration.max_concurrency,
                timeout_seconds=settings.orchestration.department_timeout_seconds,
                on_event=on_event,
            ),
            aggregator=ResultAggregator(brain, settings=settings.orchestration),
            gatherer=gatherer,
            resources=[resource for resource in resources if resource is not None],
        )

    @property
    def departments(self) -> list[str]:
        return list(self._heads)

    @asynccontextmanager
    async def lifecycle(self) -> AsyncIterator["ProductionOrchestrator"]:
        try:
            yield self
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        for resource in self._resources:
            await resource.aclose()

    async def handle_request(self, request: ProductionRequest) -> OrchestratorResult:
        """Run one request end to end.

        Structural planning errors propagate before any department starts; every other
        failure is folded into the department reports.
        """
        metrics.mark_orchestrator_request_started()
        recommendation: str | None = None
        try:
            with request_log_context(request_id=request.request_id, project_id=request.project_id):
                result = await self._handle(request)
            recommendation = result.recommendation.value
            return result
        finally:
            metrics.mark_orchestrator_request_completed(recommendation=recommendation)

    async def _handle(self, request: ProductionRequest) -> OrchestratorResult:
        logger.info("orchestration_started", request_id=request.request_id, project_id=request.project_id)
        project_context: dict[str, Any] = {}
        if self._gatherer is not None:
            project_context = await self._gatherer.gather(
                request.project_id,
                project_slug=request.project_slug,
                query=request.prompt,
            )

        routed = self._router.route(request)
        nodes = [
            DepartmentNode(department_id=item.department, relevance=item.relevance, role=item.role)
            for item in routed
            if item.role != DepartmentRole.NOT_RELEVANT
        ]
        plan = build_plan(nodes, self._dependencies)

        async def run_department(node: DepartmentNode, upstream: Mapping[str, DepartmentReport]) -> DepartmentReport:
            head = self._heads.get(node.department_id)
            if head is None:
                raise DepartmentExecutionError(f"No department head registered for '{node.department_id}'")
            return await head.run(
                node,
                prompt=request.prompt,
                request_id=request.request_id,
                project_context=project_context,
                upstream=upstream,
            )

        executed = {report.department: report for report in await self._executor.execute(plan, run_department)}
        reports = [
            executed.get(item.department) or DepartmentReport.not_relevant(item.department, item.relevance)
            for item in routed
        ]

        result = await self._aggregator.aggregate(
            reports,
            request_id=request.request_id,
            project_id=request.project_id,
        )
        gate_report = run_all_quality_gates(result)
        gate_action, reason = quality_recommendation(gate_report)
        logger.info(
            "orchestration_completed",
            request_id=request.request_id,
            recommendation=result.recommendation.value,
            gate_recommendation=gate_action.value,
            gate_reason=reason,
            tiers=plan.tiers,
        )
        return result.model_copy(update={"gate_report": gate_report})
