"""
Tiered Department Execution

Runs the departments of an execution plan tier by tier. Departments inside a tier run
concurrently; a department only starts after every dependency finished, and it is
skipped when any dependency failed or was skipped.
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Mapping

from ..core.logging import get_logger
from ..schemas.departments import (
    DepartmentNode,
    DepartmentReport,
    DepartmentStatus,
    ExecutionState,
)
from .planner import ExecutionPlan

logger = get_logger(name=__name__)

DepartmentRunner = Callable[[DepartmentNode, Mapping[str, DepartmentReport]], Awaitable[DepartmentReport]]


class ExecutionEventType(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


ExecutionListener = Callable[[ExecutionEventType, DepartmentNode], Awaitable[None]]


class ParallelExecutor:
    """Executes an ``ExecutionPlan`` with bounded concurrency."""

    def __init__(
        self,
        *,
        max_concurrency: int = 8,
        timeout_seconds: float | None = None,
        on_event: ExecutionListener | None = None,
    ) -> None:
        self.max_concurrency = max(1, max_concurrency)
        self.timeout_seconds = timeout_seconds
        self._on_event = on_event

    async def _emit(self, event: ExecutionEventType, node: DepartmentNode) -> None:
        if self._on_event is None:
            return
        try:
            await self._on_event(event, node)
        except Exception:  # listeners never break execution
            logger.exception(
                "execution_listener_failed",
                department=node.department_id,
                listener_event=event.value,
            )

    async def execute(self, plan: ExecutionPlan, runner: DepartmentRunner) -> list[DepartmentReport]:
        """Run every planned department and return one report per department in plan order."""
        semaphore = asyncio.Semaphore(self.max_concurrency)
        reports: dict[str, DepartmentReport] = {}

        for index, tier in enumerate(plan.tiers):
            logger.debug("execution_tier_started", tier=index, departments=tier)
            runnable: list[DepartmentNode] = []
            for name in tier:
                node = plan.nodes[name]
                blocked = [dep for dep in node.dependencies if plan.nodes[dep].state != ExecutionState.COMPLETE]
                if blocked:
                    node.state = ExecutionState.SKIPPED
                    reports[name] = DepartmentReport(
                        department=name,
                        relevance=node.relevance,
                        role=node.role,
                        status=DepartmentStatus.SKIPPED,
                        issues=[f"{name} department skipped: dependency {', '.join(blocked)} did not complete"],
                    )
                    logger.info("department_skipped", department=name, blocked_by=blocked)
                    await self._emit(ExecutionEventType.SKIPPED, node)
                    continue
                runnable.append(node)

            results = await asyncio.gather(
                *(self._run_node(node, runner, reports, semaphore) for node in runnable),
                return_exceptions=True,
            )
            for node, result in zip(runnable, results):
                if isinstance(result, BaseException):
                    node.state = ExecutionState.FAILED
                    logger.error("department_execution_crashed", department=node.department_id, error=repr(result))
                    result = self._failure_report(node, str(result) or type(result).__name__, time.perf_counter())
                reports[node.department_id] = result

        return [reports[name] for name in plan.departments]

    async def _run_node(
        self,
        node: DepartmentNode,
        runner: DepartmentRunner,
        reports: Mapping[str, DepartmentReport],
        semaphore: asyncio.Semaphore,
    ) -> DepartmentReport:
        upstream = {
            dep: reports[dep]
            for dep in node.dependencies
            if dep in reports and reports[dep].status == DepartmentStatus.COMPLETE
        }
        async with semaphore:
            node.state = ExecutionState.RUNNING
            await self._emit(ExecutionEventType.STARTED, node)
            start = time.perf_counter()
            try:
                if self.timeout_seconds is not None:
                    report = await asyncio.wait_for(runner(node, upstream), timeout=self.timeout_seconds)
                else:
                    report = await runner(node, upstream)
            except asyncio.TimeoutError:
                report = self._failure_report(
                    node, f"timed out after {self.timeout_seconds}s", start
                )
                logger.warning("department_timeout", department=node.department_id, timeout=self.timeout_seconds)
            except Exception as exc:
                report = self._failure_report(node, str(exc), start)
                logger.exception("department_failed", department=node.department_id)

        if report.status == DepartmentStatus.COMPLETE:
            node.state = ExecutionState.COMPLETE
            await self._emit(ExecutionEventType.COMPLETED, node)
        else:
            node.state = ExecutionState.FAILED
            await self._emit(ExecutionEventType.FAILED, node)
        return report

    @staticmethod
    def _failure_report(node: DepartmentNode, reason: str, start: float) -> DepartmentReport:
        return DepartmentReport(
            department=node.department_id,
            relevance=node.relevance,
            role=node.role,
            status=DepartmentStatus.PENDING,
            issues=[f"{node.department_id} department failed: {reason}"],
            duration_ms=(time.perf_counter() - start) * 1000,
        )
