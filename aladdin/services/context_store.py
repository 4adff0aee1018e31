from __future__ import annotations

import asyncio
from typing import Any, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.config import ContextStoreSettings
from ..core.exceptions import BrainUnavailableError, ContextStoreError
from ..core.logging import get_logger
from .brain import BrainClient
from .cache import CacheBackend

logger = get_logger(name=__name__)

PROJECT_FIELDS = (
    "id",
    "name",
    "slug",
    "type",
    "genre",
    "tone",
    "themes",
    "targetAudience",
    "phase",
    "status",
)

RELATED_COLLECTIONS = ("characters", "scenes", "locations")


class Page(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    docs: list[dict[str, Any]] = Field(default_factory=list)
    total_docs: int = Field(0, alias="totalDocs")
    page: int = 1
    has_next_page: bool = Field(False, alias="hasNextPage")


class ContextStoreClient:
    """Read-only client for the document store's REST API."""

    def __init__(self, settings: ContextStoreSettings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._owns_client = client is None
        headers: dict[str, str] = {}
        if settings.api_key is not None:
            headers["Authorization"] = f"users API-Key {settings.api_key.get_secret_value()}"
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.timeout_seconds),
            headers=headers,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> Any:
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ContextStoreError(f"Context store query failed for {path}: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise ContextStoreError(f"Context store returned a non-JSON body for {path}") from exc

    async def get_project(self, project_id: str) -> dict[str, Any]:
        project = await self._get(f"/projects/{project_id}", {"depth": 0})
        if not isinstance(project, dict):
            raise ContextStoreError(f"Context store returned an invalid project for {project_id}")
        return project

    async def find_project_by_slug(self, slug: str) -> dict[str, Any] | None:
        page = await self._page("/projects", {"where[slug][equals]": slug, "limit": 1, "depth": 0})
        return page.docs[0] if page.docs else None

    async def list_related(
        self,
        collection: str,
        project_id: str,
        *,
        limit: int | None = None,
        page: int = 1,
        depth: int | None = None,
    ) -> Page:
        params = {
            "where[project][equals]": project_id,
            "limit": limit or self._settings.page_size,
            "page": page,
            "depth": self._settings.depth if depth is None else min(depth, self._settings.depth),
        }
        return await self._page(f"/{collection}", params)

    async def _page(self, path: str, params: dict[str, Any]) -> Page:
        data = await self._get(path, params)
        try:
            return Page.model_validate(data)
        except ValidationError as exc:
            raise ContextStoreError(f"Context store returned an invalid page for {path}") from exc


class ContextGatherer:
    """Builds the project context handed to scoring prompts."""

    def __init__(
        self,
        store: ContextStoreClient | None,
        *,
        cache: CacheBackend | None = None,
        brain: BrainClient | None = None,
        cache_ttl_seconds: int = 300,
        related_limit: int = 10,
    ) -> None:
        self._store = store
        self._cache = cache
        self._brain = brain
        self._cache_ttl = cache_ttl_seconds
        self._related_limit = related_limit

    async def gather(
        self,
        project_id: str | None = None,
        *,
        project_slug: str | None = None,
        query: str | None = None,
    ) -> dict[str, Any]:
        if project_id is None and project_slug is None:
            return {}
        cache_key = f"context:project:{project_id or project_slug}"
        if self._cache is not None:
            cached = await self._cache.get(cache_key)
            if isinstance(cached, dict):
                logger.debug("context_cache_hit", key=cache_key)
                return await self._with_related(cached, project_id, query)

        try:
            context = await self._load(project_id, project_slug)
        except ContextStoreError as exc:
            logger.warning("context_store_unavailable", project_id=project_id, error=str(exc))
            return await self._with_related(self._minimal(project_id, project_slug), project_id, query)

        if self._cache is not None:
            await self._cache.set(cache_key, context, self._cache_ttl)
        return await self._with_related(context, project_id, query)

    async def _load(self, project_id: str | None, project_slug: str | None) -> dict[str, Any]:
        if self._store is None:
            return self._minimal(project_id, project_slug)
        if project_id is not None:
            project = await self._store.get_project(project_id)
        else:
            project = await self._store.find_project_by_slug(project_slug or "")
            if project is None:
                raise ContextStoreError(f"No project with slug '{project_slug}'")
        resolved_id = str(project.get("id", project_id))
        pages = await asyncio.gather(
            *(
                self._store.list_related(collection, resolved_id, limit=self._related_limit, depth=0)
                for collection in RELATED_COLLECTIONS
            )
        )
        context: dict[str, Any] = {
            "project": {field: project[field] for field in PROJECT_FIELDS if project.get(field) is not None}
        }
        for collection, page in zip(RELATED_COLLECTIONS, pages):
            context[collection] = [_summarise(doc) for doc in page.docs]
        return context

    async def _with_related(
        self,
        context: dict[str, Any],
        project_id: str | None,
        query: str | None,
    ) -> dict[str, Any]:
        if self._brain is None or not query:
            return context
        try:
            results = await self._brain.semantic_search(query, limit=5)
        except BrainUnavailableError as exc:
            logger.warning("context_brain_search_failed", project_id=project_id, error=str(exc))
            return context
        return {
            **context,
            "related": [
                {"id": result.node.id, "type": result.node.type, "score": round(result.score, 4)}
                for result in results
            ],
        }

    @staticmethod
    def _minimal(project_id: str | None, project_slug: str | None) -> dict[str, Any]:
        identifier = project_id or project_slug
        return {"project": {"id": identifier, "name": "Unknown Project", "slug": project_slug or identifier}}


def _summarise(doc: dict[str, Any], fields: Sequence[str] = ("id", "name", "title", "description", "summary")) -> dict[str, Any]:
    return {field: doc[field] for field in fields if doc.get(field) is not None}
