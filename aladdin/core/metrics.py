from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

LLM_REQUESTS_TOTAL = Counter(
    "aladdin_llm_requests_total",
    "Chat completion calls grouped by model and outcome",
    labelnames=("model", "outcome"),
)

LLM_RETRY_TOTAL = Counter(
    "aladdin_llm_retry_total",
    "Transitions of the completion retry state machine",
    labelnames=("phase",),
)

LLM_TOKENS_TOTAL = Counter(
    "aladdin_llm_tokens_total",
    "Tokens consumed by completion calls",
    labelnames=("model", "kind"),
)

LLM_LATENCY_SECONDS = Histogram(
    "aladdin_llm_latency_seconds",
    "Latency of a single completion attempt",
    labelnames=("model",),
    buckets=(0.25, 0.5, 1, 2, 5, 10, 20, 30, 60, float("inf")),
)

QUALITY_ASSESSMENTS_TOTAL = Counter(
    "aladdin_quality_assessments_total",
    "Quality assessments produced by department and decision",
    labelnames=("department", "decision"),
)

QUALITY_DECISION_OVERRIDES_TOTAL = Counter(
    "aladdin_quality_decision_overrides_total",
    "Model-proposed decisions replaced by the threshold policy",
    labelnames=("department",),
)

QUALITY_CACHE_TOTAL = Counter(
    "aladdin_quality_cache_total",
    "Quality cache lookups by result",
    labelnames=("result",),
)

CACHE_ERRORS_TOTAL = Counter(
    "aladdin_cache_errors_total",
    "Cache backend failures by operation",
    labelnames=("backend", "operation"),
)

DEPARTMENT_RUNS_TOTAL = Counter(
    "aladdin_department_runs_total",
    "Department executions by final status",
    labelnames=("department", "status"),
)

DEPARTMENT_LATENCY_SECONDS = Histogram(
    "aladdin_department_latency_seconds",
    "Wall time spent running a department",
    labelnames=("department",),
    buckets=(0.5, 1, 2, 5, 10, 30, 60, 120, 300, 600, float("inf")),
)

SPECIALIST_VERDICTS_TOTAL = Counter(
    "aladdin_specialist_verdicts_total",
    "Department-head verdicts on specialist output",
    labelnames=("department", "verdict"),
)

ORCHESTRATOR_RECOMMENDATIONS_TOTAL = Counter(
    "aladdin_orchestrator_recommendations_total",
    "Final recommendations per handled request",
    labelnames=("recommendation",),
)

ORCHESTRATOR_ACTIVE_GAUGE = Gauge(
    "aladdin_orchestrator_requests_active",
    "Requests currently being orchestrated",
)

BRAIN_REQUESTS_TOTAL = Counter(
    "aladdin_brain_requests_total",
    "Brain service calls by operation and outcome",
    labelnames=("operation", "outcome"),
)


def record_llm_request(*, model: str, outcome: str, latency: float | None = None) -> None:
    LLM_REQUESTS_TOTAL.labels(model=model, outcome=outcome).inc()
    if latency is not None:
        LLM_LATENCY_SECONDS.labels(model=model).observe(max(0.0, latency))


def increment_llm_retry(*, phase: str) -> None:
    LLM_RETRY_TOTAL.labels(phase=phase).inc()


def record_token_usage(*, model: str, prompt_tokens: int, completion_tokens: int) -> None:
    if prompt_tokens:
        LLM_TOKENS_TOTAL.labels(model=model, kind="prompt").inc(prompt_tokens)
    if completion_tokens:
        LLM_TOKENS_TOTAL.labels(model=model, kind="completion").inc(completion_tokens)


def record_quality_assessment(*, department: str, decision: str) -> None:
    QUALITY_ASSESSMENTS_TOTAL.labels(department=department, decision=decision).inc()


def increment_decision_override(*, department: str) -> None:
    QUALITY_DECISION_OVERRIDES_TOTAL.labels(department=department).inc()


def increment_quality_cache(*, result: str) -> None:
    QUALITY_CACHE_TOTAL.labels(result=result).inc()


def increment_cache_error(*, backend: str, operation: str) -> None:
    CACHE_ERRORS_TOTAL.labels(backend=backend, operation=operation).inc()


def record_department_run(*, department: str, status: str, latency: float) -> None:
    DEPARTMENT_RUNS_TOTAL.labels(department=department, status=status).inc()
    DEPARTMENT_LATENCY_SECONDS.labels(department=department).observe(max(0.0, latency))


def increment_specialist_verdict(*, department: str, verdict: str) -> None:
    SPECIALIST_VERDICTS_TOTAL.labels(department=department, verdict=verdict).inc()


def mark_orchestrator_request_started() -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.inc()


def mark_orchestrator_request_completed(*, recommendation: str | None) -> None:
    ORCHESTRATOR_ACTIVE_GAUGE.dec()
    if recommendation is not None:
        ORCHESTRATOR_RECOMMENDATIONS_TOTAL.labels(recommendation=recommendation).inc()


def record_brain_request(*, operation: str, outcome: str) -> None:
    BRAIN_REQUESTS_TOTAL.labels(operation=operation, outcome=outcome).inc()


_server_started = False


def start_metrics_server(port: int) -> bool:
    """Serve the default registry once per process; later calls are no-ops."""
    global _server_started
    if _server_started:
        return False
    start_http_server(port)
    _server_started = True
    return True
