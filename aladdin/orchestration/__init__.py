"""
Orchestration Package

Request-level coordination of the production departments:
- Keyword relevance routing
- Dependency tier planning
- Tiered parallel department execution
- Result aggregation and final recommendation
"""

from .aggregator import ResultAggregator, compute_completeness, compute_overall_quality, recommend
from .orchestrator import ProductionOrchestrator
from .parallel_executor import ExecutionEventType, ParallelExecutor
from .planner import ExecutionPlan, build_plan
from .routing import DepartmentRouter, KeywordRelevanceScorer, RelevanceScore, RelevanceScorer

__all__ = [
    "DepartmentRouter",
    "ExecutionEventType",
    "ExecutionPlan",
    "KeywordRelevanceScorer",
    "ParallelExecutor",
    "ProductionOrchestrator",
    "RelevanceScore",
    "RelevanceScorer",
    "ResultAggregator",
    "build_plan",
    "compute_completeness",
    "compute_overall_quality",
    "recommend",
]
