"""
Media Tracker AI — Web Search Router

Design patterns:
  - Router: one entry point dispatching to Google CSE, Serper, DuckDuckGo or
    Yandex (or to the host shell, via the transport)
  - Adapter: every provider payload is normalized to SearchResult
  - Fallback Strategy: keyless DuckDuckGo stands in for text search when the
    configured provider lacks credentials
  - Cache Aside: in-memory TTL cache of non-empty results

The router never raises: provider failures degrade to an empty list.
"""

from __future__ import annotations

import hashlib
import logging
import time
import xml.etree.ElementTree as ET
from typing import Any, Dict, List, Optional, Tuple

import httpx

from media_tracker.models import SearchConfig, SearchResult, SearchType

logger = logging.getLogger(__name__)

MAX_RESULTS = 5

_GOOGLE_URL = "https://www.googleapis.com/customsearch/v1"
_SERPER_SEARCH_URL = "https://google.serper.dev/search"
_SERPER_IMAGES_URL = "https://google.serper.dev/images"
_DDG_URL = "https://api.duckduckgo.com/"
_YANDEX_URL = "https://yandex.com/search/xml"

_BROWSER_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# ── Cache ─────────────────────────────────────────────────

_cache: Dict[str, Tuple[float, List[SearchResult]]] = {}


def _cache_key(query: str, config: SearchConfig) -> str:
    raw = f"p={config.provider};t={config.search_type};cx={config.cx or ''};u={config.user or ''};q={query.strip()}"
    return hashlib.md5(raw.encode()).hexdigest()


def _get_cached(key: str, ttl: float) -> Optional[List[SearchResult]]:
    if key in _cache:
        ts, val = _cache[key]
        if time.time() - ts < ttl:
            return val
        del _cache[key]
    return None


# ── Shared client ─────────────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=12.0, write=5.0, pool=5.0),
            follow_redirects=True,
        )
    return _client


async def close_client() -> None:
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Providers ─────────────────────────────────────────────


async def _duckduckgo(query: str) -> List[SearchResult]:
    """Instant Answer API: abstract first, then related topics. Text only."""
    client = await _get_client()
    resp = await client.get(
        _DDG_URL,
        params={"q": query, "format": "json", "no_html": 1, "skip_disambig": 1},
        headers={"User-Agent": _BROWSER_UA},
        timeout=8.0,
    )
    resp.raise_for_status()
    data = resp.json()

    results: List[SearchResult] = []
    abstract = data.get("AbstractText") or ""
    abstract_url = data.get("AbstractURL") or ""
    if abstract and abstract_url:
        results.append(SearchResult(
            title=data.get("Heading") or abstract,
            snippet=abstract,
            link=abstract_url,
        ))

    related = 0
    for topic in data.get("RelatedTopics", []):
        if related >= MAX_RESULTS:
            break
        text = topic.get("Text") or ""
        url = topic.get("FirstURL") or ""
        if text and url:
            results.append(SearchResult(title=text, snippet=text, link=url))
            related += 1
    return results


def _google_image(item: Dict[str, Any]) -> Optional[str]:
    link = item.get("link") or ""
    if link.lower().endswith((".jpg", ".jpeg", ".png")):
        return link
    cse = (item.get("pagemap") or {}).get("cse_image") or [{}]
    return cse[0].get("src") or (item.get("image") or {}).get("thumbnailLink")


async def _google(query: str, api_key: str, cx: str, search_type: SearchType) -> List[SearchResult]:
    client = await _get_client()
    params: Dict[str, Any] = {"key": api_key, "cx": cx, "q": query, "num": 8, "safe": "off"}
    if search_type == "image":
        params["searchType"] = "image"
    resp = await client.get(_GOOGLE_URL, params=params)
    resp.raise_for_status()
    items = resp.json().get("items", [])

    if search_type == "image":
        return [SearchResult(image=img) for img in map(_google_image, items) if img]

    return [
        SearchResult(
            title=item.get("title"),
            snippet=item.get("snippet"),
            link=item.get("link"),
            image=((item.get("pagemap") or {}).get("cse_image") or [{}])[0].get("src"),
        )
        for item in items
    ]


async def _serper(query: str, api_key: str, search_type: SearchType) -> List[SearchResult]:
    client = await _get_client()
    image = search_type == "image"
    resp = await client.post(
        _SERPER_IMAGES_URL if image else _SERPER_SEARCH_URL,
        headers={"X-API-KEY": api_key, "Content-Type": "application/json"},
        json={"q": query, "num": 10} if image else {"q": query},
    )
    if resp.status_code == 403:
        logger.error("Serper API 403 Forbidden: invalid API key or quota exceeded")
        return []
    resp.raise_for_status()
    data = resp.json()

    if image:
        return [SearchResult(image=img["imageUrl"]) for img in data.get("images", []) if img.get("imageUrl")]
    return [
        SearchResult(title=item.get("title"), snippet=item.get("snippet"), link=item.get("link"))
        for item in data.get("organic", [])
    ]


def _xml_text(node: Optional[ET.Element]) -> str:
    return "".join(node.itertext()).strip() if node is not None else ""


def _parse_yandex(xml_text: str) -> List[SearchResult]:
    root = ET.fromstring(xml_text)
    results: List[SearchResult] = []
    for doc in root.iter("doc"):
        title = _xml_text(doc.find("title"))
        link = _xml_text(doc.find("url"))
        passage = _xml_text(doc.find("passages/passage"))
        if title or link:
            results.append(SearchResult(title=title, snippet=passage, link=link))
    return results


async def _yandex(query: str, user: str, api_key: str) -> List[SearchResult]:
    client = await _get_client()
    resp = await client.get(
        _YANDEX_URL,
        params={"user": user, "key": api_key, "l10n": "en", "filter": "none", "query": query},
    )
    resp.raise_for_status()
    return _parse_yandex(resp.text)


# ── Direct dispatch ───────────────────────────────────────


def select_provider(config: SearchConfig) -> Optional[str]:
    """
    Provider that will actually serve a direct (non-host) request.

    Text search degrades to DuckDuckGo when credentials are incomplete;
    image search has no such fallback and yields None.
    """
    provider = config.provider
    if provider == "google" and config.api_key and config.cx:
        return "google"
    if provider == "serper" and config.api_key:
        return "serper"
    if config.search_type == "image":
        return None
    if provider == "yandex" and config.api_key and config.user:
        return "yandex"
    return "duckduckgo"


async def dispatch_direct(query: str, config: SearchConfig) -> List[SearchResult]:
    provider = select_provider(config)
    if provider is None:
        logger.debug("No %s search available for provider %s", config.search_type, config.provider)
        return []
    if provider != config.provider:
        logger.info("Search provider %s not configured, using %s", config.provider, provider)

    if provider == "google":
        return await _google(query, config.api_key or "", config.cx or "", config.search_type)
    if provider == "serper":
        return await _serper(query, config.api_key or "", config.search_type)
    if provider == "yandex":
        return await _yandex(query, config.user or "", config.api_key or "")
    return await _duckduckgo(query)


# ── Public API ────────────────────────────────────────────


async def search_web(
    query: str,
    config: SearchConfig,
    transport: Any = None,
    *,
    limit: int = MAX_RESULTS,
    cache_ttl: Optional[float] = None,
) -> List[SearchResult]:
    """Search with the configured provider; never raises."""
    if not query.strip():
        return []
    if config.provider == "yandex" and config.search_type == "image":
        logger.debug("Yandex image search not supported")
        return []

    key = _cache_key(query, config)
    if cache_ttl:
        cached = _get_cached(key, cache_ttl)
        if cached is not None:
            logger.debug("Search cache HIT: %s", query[:60])
            return cached

    if transport is None:
        from media_tracker.clients.transport import get_transport

        transport = get_transport()

    t0 = time.perf_counter()
    try:
        results = await transport.web_search(query, config)
    except Exception as exc:
        logger.warning("%s %s search failed: %s", config.provider, config.search_type, exc)
        return []

    results = results[: max(limit, 0)]
    logger.info(
        "Search %s/%s %r → %d results (%.0f ms)",
        config.provider, config.search_type, query[:60], len(results),
        (time.perf_counter() - t0) * 1000,
    )
    if cache_ttl and results:
        _cache[key] = (time.time(), results)
    return results


async def text_search(query: str, snapshot: Any, transport: Any = None, *, force: bool = False) -> List[SearchResult]:
    """Text search honoring the global enable switch unless ``force`` is set."""
    if not snapshot.enable_search and not force:
        return []
    return await search_web(
        query,
        snapshot.search_config("text"),
        transport,
        cache_ttl=snapshot.search_cache_ttl,
    )


async def image_search(query: str, snapshot: Any, transport: Any = None) -> List[SearchResult]:
    if not snapshot.enable_search:
        return []
    return await search_web(
        query,
        snapshot.search_config("image"),
        transport,
        cache_ttl=snapshot.search_cache_ttl,
    )
