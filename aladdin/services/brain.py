from __future__ import annotations

from typing import Any, Literal, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_incrementing

from ..core import metrics
from ..core.config import BrainSettings
from ..core.exceptions import BrainUnavailableError
from ..core.logging import get_logger

logger = get_logger(name=__name__)


class Contradiction(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: Literal["direct", "semantic", "temporal", "logical"] = "semantic"
    severity: Literal["low", "medium", "high", "critical"] = "medium"
    description: str = ""
    conflicting_nodes: list[str] = Field(default_factory=list, alias="conflictingNodes")
    suggested_resolution: str | None = Field(default=None, alias="suggestedResolution")


class ValidationResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    valid: bool
    quality_score: float = Field(0.0, alias="qualityScore")
    coherence_score: float = Field(0.0, alias="coherenceScore")
    creativity_score: float = Field(0.0, alias="creativityScore")
    completeness_score: float = Field(0.0, alias="completenessScore")
    contradictions: list[Contradiction] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class BrainNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    properties: dict[str, Any] = Field(default_factory=dict)


class SemanticSearchResult(BaseModel):
    model_config = ConfigDict(extra="ignore")

    node: BrainNode
    score: float
    distance: float = 0.0
    explanation: str | None = None


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return 500 <= exc.response.status_code < 600
    return False


class BrainClient:
    """Knowledge-graph consistency service; callers treat every failure as 'unavailable'."""

    def __init__(
        self,
        settings: BrainSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._settings = settings
        self._owns_client = client is None
        headers = {"Content-Type": "application/json"}
        if settings.api_key is not None:
            headers["Authorization"] = f"Bearer {settings.api_key.get_secret_value()}"
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_seconds),
            headers=headers,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, *, operation: str, json: Any | None = None) -> Any:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.max_retries),
                wait=wait_incrementing(
                    start=self._settings.retry_backoff_seconds,
                    increment=self._settings.retry_backoff_seconds,
                ),
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "brain_request_retry",
                            operation=operation,
                            attempt=attempt.retry_state.attempt_number,
                        )
                    response = await self._client.request(method, path, json=json)
                    response.raise_for_status()
        except httpx.HTTPError as exc:
            metrics.record_brain_request(operation=operation, outcome="error")
            status = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else "NETWORK"
            raise BrainUnavailableError(f"Brain API error in {operation}: [{status}] {exc}") from exc
        try:
            data = response.json()
        except ValueError as exc:
            metrics.record_brain_request(operation=operation, outcome="error")
            raise BrainUnavailableError(f"Brain API returned a non-JSON body in {operation}") from exc
        metrics.record_brain_request(operation=operation, outcome="success")
        return data

    async def validate_content(
        self,
        content: Any,
        content_type: str,
        project_id: str,
        *,
        context: dict[str, Any] | None = None,
    ) -> ValidationResult:
        payload: dict[str, Any] = {"content": content, "type": content_type, "projectId": project_id}
        if context:
            payload["context"] = context
        data = await self._request("POST", "/api/v1/validate", operation="validate", json=payload)
        try:
            return ValidationResult.model_validate(data)
        except ValidationError as exc:
            raise BrainUnavailableError("Brain API returned an invalid validation result") from exc

    async def semantic_search(
        self,
        query: str,
        *,
        embedding: Sequence[float] | None = None,
        types: Sequence[str] | None = None,
        limit: int = 10,
        threshold: float = 0.7,
    ) -> list[SemanticSearchResult]:
        payload: dict[str, Any] = {"query": query, "limit": limit, "threshold": threshold}
        if embedding is not None:
            payload["embedding"] = list(embedding)
        if types:
            payload["types"] = list(types)
        data = await self._request("POST", "/api/v1/search/semantic", operation="semantic_search", json=payload)
        items = data.get("results", []) if isinstance(data, dict) else data
        if items is not None and not isinstance(items, list):
            raise BrainUnavailableError("Brain API returned invalid search results")
        try:
            results = [SemanticSearchResult.model_validate(item) for item in items or []]
        except ValidationError as exc:
            raise BrainUnavailableError("Brain API returned invalid search results") from exc
        return sorted(results, key=lambda result: result.score, reverse=True)

    async def health(self) -> bool:
        try:
            await self._request("GET", "/api/v1/health", operation="health")
        except BrainUnavailableError as exc:
            logger.warning("brain_health_failed", error=str(exc))
            return False
        return True
