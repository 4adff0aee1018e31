import httpx
import pytest

from aladdin.core.config import BrainSettings, ContextStoreSettings
from aladdin.core.exceptions import ContextStoreError
from aladdin.services.brain import BrainClient
from aladdin.services.cache import InMemoryCache
from aladdin.services.context_store import ContextGatherer, ContextStoreClient

PROJECT = {
    "id": "p1",
    "name": "Desert Heist",
    "slug": "desert-heist",
    "genre": "adventure",
    "themes": ["greed", "loyalty"],
    "createdAt": "2025-01-01",
}


def _store_handler(requests, *, fail=False):
    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if fail:
            return httpx.Response(500, json={"errors": ["down"]})
        path = request.url.path
        if path == "/api/projects/p1":
            return httpx.Response(200, json=PROJECT)
        if path == "/api/projects":
            slug = request.url.params.get("where[slug][equals]")
            docs = [PROJECT] if slug == "desert-heist" else []
            return httpx.Response(200, json={"docs": docs, "totalDocs": len(docs)})
        if path == "/api/characters":
            assert request.url.params["where[project][equals]"] == "p1"
            return httpx.Response(
                200,
                json={"docs": [{"id": "c1", "name": "Ada", "description": "A thief", "portrait": {"url": "x"}}], "totalDocs": 1},
            )
        return httpx.Response(200, json={"docs": [], "totalDocs": 0})

    return handler


def _client(handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://store.test/api")
    return ContextStoreClient(ContextStoreSettings(enabled=True, base_url="http://store.test/api"), client=http)


@pytest.mark.asyncio
async def test_gather_collects_project_and_related_documents():
    requests = []
    gatherer = ContextGatherer(_client(_store_handler(requests)))

    context = await gatherer.gather("p1")

    assert context["project"] == {
        "id": "p1",
        "name": "Desert Heist",
        "slug": "desert-heist",
        "genre": "adventure",
        "themes": ["greed", "loyalty"],
    }
    assert context["characters"] == [{"id": "c1", "name": "Ada", "description": "A thief"}]
    assert context["scenes"] == []
    assert context["locations"] == []
    related = [request for request in requests if request.url.path != "/api/projects/p1"]
    assert all(request.url.params["depth"] == "0" for request in related)


@pytest.mark.asyncio
async def test_gather_resolves_project_slug():
    requests = []
    gatherer = ContextGatherer(_client(_store_handler(requests)))

    context = await gatherer.gather(project_slug="desert-heist")

    assert context["project"]["id"] == "p1"
    assert context["characters"][0]["name"] == "Ada"


@pytest.mark.asyncio
async def test_unknown_slug_falls_back_to_minimal_context():
    gatherer = ContextGatherer(_client(_store_handler([])))

    context = await gatherer.gather(project_slug="lost-city")

    assert context == {"project": {"id": "lost-city", "name": "Unknown Project", "slug": "lost-city"}}


@pytest.mark.asyncio
async def test_store_outage_falls_back_to_minimal_context():
    gatherer = ContextGatherer(_client(_store_handler([], fail=True)))

    context = await gatherer.gather("p1")

    assert context == {"project": {"id": "p1", "name": "Unknown Project", "slug": "p1"}}


@pytest.mark.asyncio
async def test_store_errors_surface_from_the_client():
    client = _client(_store_handler([], fail=True))
    with pytest.raises(ContextStoreError):
        await client.get_project("p1")


@pytest.mark.asyncio
async def test_gathered_context_is_cached():
    requests = []
    cache = InMemoryCache()
    gatherer = ContextGatherer(_client(_store_handler(requests)), cache=cache)

    first = await gatherer.gather("p1")
    count = len(requests)
    second = await gatherer.gather("p1")

    assert first == second
    assert len(requests) == count
    assert await cache.keys("context:") == ["context:project:p1"]


@pytest.mark.asyncio
async def test_no_project_means_no_context():
    requests = []
    gatherer = ContextGatherer(_client(_store_handler(requests)))

    assert await gatherer.gather() == {}
    assert requests == []


@pytest.mark.asyncio
async def test_list_related_caps_requested_depth():
    requests = []
    client = _client(_store_handler(requests))

    page = await client.list_related("characters", "p1", depth=5)

    assert page.total_docs == 1
    assert requests[0].url.params["depth"] == "1"
    assert requests[0].url.params["limit"] == "50"


@pytest.mark.asyncio
async def test_brain_search_adds_related_nodes():
    async def brain_handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"results": [{"node": {"id": "n9", "type": "location"}, "score": 0.812345}]})

    brain_http = httpx.AsyncClient(transport=httpx.MockTransport(brain_handler), base_url="http://brain.test")
    brain = BrainClient(BrainSettings(enabled=True, retry_backoff_seconds=0.0), client=brain_http)
    gatherer = ContextGatherer(None, brain=brain)

    context = await gatherer.gather("p1", query="the oasis")

    assert context["project"]["name"] == "Unknown Project"
    assert context["related"] == [{"id": "n9", "type": "location", "score": 0.8123}]


@pytest.mark.asyncio
async def test_non_json_store_body_falls_back_to_minimal_context():
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>maintenance</html>")

    client = _client(handler)
    with pytest.raises(ContextStoreError):
        await client.get_project("p1")

    context = await ContextGatherer(client).gather("p1")

    assert context == {"project": {"id": "p1", "name": "Unknown Project", "slug": "p1"}}
