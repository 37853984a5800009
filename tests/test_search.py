"""
Tests for the search provider router (direct HTTP and host delegation).
"""

from __future__ import annotations

import json

import httpx
import pytest

from media_tracker.clients import search as search_client
from media_tracker.clients.search import (
    _parse_yandex,
    image_search,
    search_web,
    select_provider,
    text_search,
)
from media_tracker.clients.transport import DirectHttpTransport, HostRpcTransport
from media_tracker.models import SearchConfig, SearchResult

DDG_PAYLOAD = {
    "Heading": "Dune",
    "AbstractText": "Dune is a 2021 science fiction film.",
    "AbstractURL": "https://en.wikipedia.org/wiki/Dune_(2021_film)",
    "RelatedTopics": [
        {"Text": f"Related {i}", "FirstURL": f"https://duckduckgo.com/{i}"} for i in range(8)
    ] + [{"Name": "Category without text"}],
}

YANDEX_XML = """<?xml version="1.0" encoding="utf-8"?>
<yandexsearch version="1.0"><response><results><grouping><group>
  <doc><url>https://example.com/dune</url><title>Dune <hlword>2021</hlword></title>
    <passages><passage>Epic adaptation of the novel.</passage></passages></doc>
</group><group>
  <doc><url>https://example.com/dune2</url><title>Dune: Part Two</title></doc>
</group></grouping></results></response></yandexsearch>"""


@pytest.fixture
def http_log(monkeypatch):
    """Route the shared search client through a MockTransport; return the request log."""
    log = {"requests": [], "handler": None}

    def _handler(request: httpx.Request) -> httpx.Response:
        log["requests"].append(request)
        return log["handler"](request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))

    async def _get_client():
        return client

    monkeypatch.setattr(search_client, "_get_client", _get_client)
    return log


class TestProviderSelection:

    def test_google_without_cx_falls_back_to_duckduckgo(self):
        assert select_provider(SearchConfig(provider="google", api_key="k")) == "duckduckgo"

    def test_yandex_without_user_falls_back(self):
        assert select_provider(SearchConfig(provider="yandex", api_key="k")) == "duckduckgo"

    def test_complete_credentials_kept(self):
        assert select_provider(SearchConfig(provider="google", api_key="k", cx="c")) == "google"
        assert select_provider(SearchConfig(provider="serper", api_key="k")) == "serper"

    def test_image_search_has_no_fallback(self):
        # Text search degrades to DuckDuckGo; image search deliberately does not.
        config = SearchConfig(provider="google", api_key="k", search_type="image")
        assert select_provider(config) is None
        assert select_provider(SearchConfig(provider="duckduckgo", search_type="image")) is None


class TestDirectSearch:

    @pytest.mark.asyncio
    async def test_google_without_cx_routes_to_duckduckgo(self, http_log):
        http_log["handler"] = lambda request: httpx.Response(200, json=DDG_PAYLOAD)
        config = SearchConfig(provider="google", api_key="k")

        results = await search_web("dune", config, DirectHttpTransport())

        assert [r.url.host for r in http_log["requests"]] == ["api.duckduckgo.com"]
        assert len(results) == 5
        assert results[0].title == "Dune"
        assert results[0].link.startswith("https://en.wikipedia.org")
        assert all(r.image is None for r in results)

    @pytest.mark.asyncio
    async def test_serper_403_returns_empty(self, http_log):
        http_log["handler"] = lambda request: httpx.Response(403, json={"message": "Forbidden"})
        config = SearchConfig(provider="serper", api_key="bad")

        assert await search_web("dune", config, DirectHttpTransport()) == []
        assert len(http_log["requests"]) == 1

    @pytest.mark.asyncio
    async def test_serper_images_only_image_urls(self, http_log):
        def handler(request):
            assert request.url.path == "/images"
            assert json.loads(request.content) == {"q": "dune poster", "num": 10}
            return httpx.Response(200, json={"images": [
                {"title": "x", "imageUrl": "https://img.example.com/1.jpg"},
                {"title": "no url"},
            ]})

        http_log["handler"] = handler
        config = SearchConfig(provider="serper", api_key="k", search_type="image")
        results = await search_web("dune poster", config, DirectHttpTransport())
        assert results == [SearchResult(image="https://img.example.com/1.jpg")]

    @pytest.mark.asyncio
    async def test_google_text_normalizes_thumbnail(self, http_log):
        http_log["handler"] = lambda request: httpx.Response(200, json={"items": [{
            "title": "Dune (2021) - IMDb",
            "snippet": "Feature adaptation",
            "link": "https://www.imdb.com/title/tt1160419/",
            "pagemap": {"cse_image": [{"src": "https://img.example.com/dune.jpg"}]},
        }]})
        config = SearchConfig(provider="google", api_key="k", cx="c")

        results = await search_web("dune", config, DirectHttpTransport())

        assert results[0].image == "https://img.example.com/dune.jpg"
        params = http_log["requests"][0].url.params
        assert params["cx"] == "c"
        assert "searchType" not in params

    @pytest.mark.asyncio
    async def test_image_search_without_credentials_makes_no_request(self, http_log):
        http_log["handler"] = lambda request: httpx.Response(200, json=DDG_PAYLOAD)
        config = SearchConfig(provider="google", api_key="k", search_type="image")

        assert await search_web("dune poster", config, DirectHttpTransport()) == []
        assert http_log["requests"] == []

    @pytest.mark.asyncio
    async def test_network_error_is_absorbed(self, http_log):
        def handler(request):
            raise httpx.ConnectError("unreachable", request=request)

        http_log["handler"] = handler
        assert await search_web("dune", SearchConfig(), DirectHttpTransport()) == []

    @pytest.mark.asyncio
    async def test_blank_query(self, http_log):
        assert await search_web("   ", SearchConfig(), DirectHttpTransport()) == []
        assert http_log["requests"] == []


class TestYandex:

    def test_parse_xml(self):
        results = _parse_yandex(YANDEX_XML)
        assert len(results) == 2
        assert results[0].title == "Dune 2021"
        assert results[0].link == "https://example.com/dune"
        assert results[0].snippet == "Epic adaptation of the novel."
        assert results[1].snippet == ""

    @pytest.mark.asyncio
    async def test_image_search_short_circuits_in_host_mode(self, make_transport):
        transport = make_transport(search=lambda q, c: [SearchResult(image="https://x/1.jpg")])
        config = SearchConfig(provider="yandex", api_key="k", user="u", search_type="image")

        assert await search_web("dune", config, transport) == []
        assert transport.search_calls == []


class TestHostDelegation:

    @pytest.mark.asyncio
    async def test_web_search_goes_through_invoke(self):
        calls = []

        async def invoke(command, args):
            calls.append((command, args))
            return json.dumps([
                {"title": "Dune", "snippet": "2021 film", "link": "https://a", "image": "https://b.jpg"},
                {"title": "No image"},
                "garbage",
            ])

        config = SearchConfig(provider="google", api_key="k", cx="c", search_type="image")
        results = await search_web("dune poster", config, HostRpcTransport(invoke))

        assert calls == [("web_search", {
            "query": "dune poster",
            "config": {"provider": "google", "api_key": "k", "cx": "c", "user": None, "search_type": "image"},
        })]
        assert results[0] == SearchResult(title="Dune", snippet="2021 film", link="https://a", image="https://b.jpg")
        assert results[1].image is None
        assert len(results) == 2

    @pytest.mark.asyncio
    async def test_invoke_failure_returns_empty(self):
        async def invoke(command, args):
            raise RuntimeError("host unavailable")

        assert await search_web("dune", SearchConfig(), HostRpcTransport(invoke)) == []


class TestSearchHelpers:

    @pytest.mark.asyncio
    async def test_results_cached(self, snapshot, make_transport):
        transport = make_transport(search=lambda q, c: [SearchResult(title="Dune")])

        first = await text_search("dune", snapshot, transport)
        second = await text_search("dune", snapshot, transport)

        assert first == second == [SearchResult(title="Dune")]
        assert len(transport.search_calls) == 1

    @pytest.mark.asyncio
    async def test_disabled_search_honors_force(self, snapshot, make_transport):
        disabled = snapshot.model_copy(update={"enable_search": False})
        transport = make_transport(search=lambda q, c: [SearchResult(title="Dune")])

        assert await text_search("dune", disabled, transport) == []
        assert await image_search("dune poster", disabled, transport) == []
        assert await text_search("dune", disabled, transport, force=True) == [SearchResult(title="Dune")]
