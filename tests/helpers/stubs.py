from __future__ import annotations

import json
from collections import deque
from typing import Any, Callable, Iterable, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage

from aladdin.agents.base import SpecialistTask
from aladdin.core.exceptions import BrainUnavailableError, ScoringFailedError
from aladdin.quality.thresholds import DEFAULT_POLICY, ThresholdPolicy
from aladdin.schemas.quality import AssessmentLevel, QualityAssessment, QualityDecision, QualityDimensions
from aladdin.services.brain import ValidationResult
from aladdin.services.llm import RetryPolicy, ScoringClient

Response = str | BaseException | Callable[[list[BaseMessage]], str]


class _BoundModel:
    def __init__(self, model: "FakeChatModel", options: dict[str, Any]) -> None:
        self._model = model
        self._options = options

    async def ainvoke(self, messages: list[BaseMessage]) -> AIMessage:
        return await self._model.respond(messages, self._options)


class FakeChatModel:
    """Scripted stand-in for a langchain chat model; pops one response per call."""

    def __init__(self, responses: Iterable[Response] = (), *, repeat_last: bool = False) -> None:
        self._responses: deque[Response] = deque(responses)
        self._repeat_last = repeat_last
        self.calls: list[dict[str, Any]] = []

    def bind(self, **options: Any) -> _BoundModel:
        return _BoundModel(self, options)

    async def respond(self, messages: list[BaseMessage], options: dict[str, Any]) -> AIMessage:
        self.calls.append({"messages": list(messages), "options": dict(options)})
        if not self._responses:
            raise AssertionError("FakeChatModel has no scripted response left")
        item = self._responses[0] if self._repeat_last and len(self._responses) == 1 else self._responses.popleft()
        if isinstance(item, BaseException):
            raise item
        content = item(messages) if callable(item) else item
        return AIMessage(
            content=content,
            usage_metadata={"input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        )


class StatusError(Exception):
    """Provider error carrying an HTTP-like status code."""

    def __init__(self, status_code: int, message: str = "provider error") -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code


def make_client(
    responses: Iterable[Response] = (),
    *,
    backup_responses: Iterable[Response] | None = None,
    max_attempts: int = 3,
    repeat_last: bool = False,
) -> tuple[ScoringClient, FakeChatModel, FakeChatModel | None]:
    primary = FakeChatModel(responses, repeat_last=repeat_last)
    backup = FakeChatModel(backup_responses) if backup_responses is not None else None
    client = ScoringClient(
        primary,
        model="primary-model",
        backup=backup,
        backup_model="backup-model" if backup is not None else None,
        policy=RetryPolicy(max_attempts=max_attempts, retry_delay_seconds=1.0),
        timeout_seconds=5.0,
    )
    return client, primary, backup


def assessment_json(
    *,
    overall: float,
    score: float | None = None,
    consistency: float | None = None,
    decision: str | None = None,
    **extra: Any,
) -> str:
    """Grading payload where every dimension defaults to ``score`` (or ``overall``)."""
    value = overall if score is None else score
    payload: dict[str, Any] = {
        "overallScore": overall,
        "qualityScore": value,
        "relevanceScore": value,
        "consistencyScore": value if consistency is None else consistency,
        "completenessScore": value,
        "creativityScore": value,
        "technicalScore": value,
        "confidence": 0.9,
        "issues": [],
        "suggestions": [],
        "reasoning": "scripted",
    }
    if decision is not None:
        payload["decision"] = decision
    payload.update(extra)
    return json.dumps(payload)


def make_assessment(
    department: str,
    overall: float,
    *,
    consistency: float | None = None,
    decision: QualityDecision | None = None,
    issues: Sequence[str] = (),
    suggestions: Sequence[str] = (),
    policy: ThresholdPolicy = DEFAULT_POLICY,
) -> QualityAssessment:
    consistency = overall if consistency is None else consistency
    return QualityAssessment(
        department=department,
        dimensions=QualityDimensions(
            confidence=overall,
            completeness=overall,
            relevance=overall,
            consistency=consistency,
        ),
        overall_score=overall,
        decision=decision or policy.decide(overall, consistency, AssessmentLevel.SPECIALIST),
        issues=tuple(issues),
        suggestions=tuple(suggestions),
    )


class StubQualityScorer:
    """Scores content from a lookup table; unknown content scores ``default``."""

    def __init__(
        self,
        scores: Mapping[str, float] | None = None,
        *,
        default: float = 85.0,
        consistency: float | None = None,
        failures: Iterable[str] = (),
        policy: ThresholdPolicy = DEFAULT_POLICY,
    ) -> None:
        self.scores = dict(scores or {})
        self.default = default
        self.consistency = consistency
        self.failures = set(failures)
        self.calls: list[tuple[str, str]] = []
        self._policy = policy

    @property
    def policy(self) -> ThresholdPolicy:
        return self._policy

    async def assess(self, content: str, department_id: str, **kwargs: Any) -> QualityAssessment:  # noqa: ARG002
        self.calls.append((department_id, content))
        if content in self.failures:
            raise ScoringFailedError("Quality assessment failed: scripted failure")
        overall = self.scores.get(content, self.default)
        return make_assessment(department_id, overall, consistency=self.consistency, issues=(f"{content} issue",))


class StubSpecialist:
    """Returns scripted outputs in order; the last output repeats once the script runs out."""

    def __init__(
        self,
        name: str,
        outputs: Sequence[str] | None = None,
        *,
        relevance: float | None = None,
        error: Exception | None = None,
    ) -> None:
        self.name = name
        self.relevance = relevance
        self._outputs = list(outputs or [f"{name} output"])
        self._error = error
        self.tasks: list[SpecialistTask] = []

    async def produce(self, task: SpecialistTask) -> str:
        self.tasks.append(task)
        if self._error is not None:
            raise self._error
        index = min(len(self.tasks), len(self._outputs)) - 1
        return self._outputs[index]


class StubBrain:
    """Brain stand-in returning a fixed validation result, or raising when ``result`` is None."""

    def __init__(self, result: ValidationResult | None = None) -> None:
        self.result = result
        self.calls: list[dict[str, Any]] = []

    async def validate_content(self, content: Any, content_type: str, project_id: str, **kwargs: Any) -> ValidationResult:
        self.calls.append({"content": content, "type": content_type, "project_id": project_id})
        if self.result is None:
            raise BrainUnavailableError("Brain API error in validate: [NETWORK] unreachable")
        return self.result

    async def semantic_search(self, query: str, **kwargs: Any) -> list[Any]:  # noqa: ARG002
        return []

    async def aclose(self) -> None:
        return None
