"""
Media Tracker AI — OMDb Client

Poster lookup by title + year from the Open Movie Database API.

Free tier: 1,000 requests/day with API key.
Fallback: graceful degradation when no API key configured.

Design patterns:
  - Repository: abstracts OMDb API behind clean interface
  - Cache Aside: in-memory TTL cache
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Tuple

import httpx

logger = logging.getLogger(__name__)

# ── Cache ─────────────────────────────────────────────────

_cache: Dict[str, Tuple[float, Any]] = {}
_CACHE_TTL = 86400  # 24h — posters rarely change


def _get_cached(key: str) -> Optional[Any]:
    if key in _cache:
        ts, val = _cache[key]
        if time.time() - ts < _CACHE_TTL:
            return val
        del _cache[key]
    return None


# ── Shared client ─────────────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            base_url="https://www.omdbapi.com",
            timeout=httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0),
        )
    return _client


async def close_client() -> None:
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── Public API ────────────────────────────────────────────


async def get_poster(title: str, year: str = "", *, api_key: str = "") -> Optional[str]:
    """Return the OMDb poster URL for a title, or None."""
    if not api_key or not title:
        return None

    clean_year = year.split("-")[0].strip() if year else ""
    cache_key = f"omdb:{title.lower()}:{clean_year}"
    cached = _get_cached(cache_key)
    if cached is not None:
        return cached or None

    params: Dict[str, Any] = {"apikey": api_key, "t": title}
    if clean_year:
        params["y"] = clean_year

    try:
        client = await _get_client()
        resp = await client.get("/", params=params)
        resp.raise_for_status()
        data = resp.json()
    except Exception as exc:
        logger.warning("OMDb request failed for %r: %s", title, exc)
        return None

    poster = data.get("Poster")
    if data.get("Response") != "True" or not poster or poster == "N/A":
        logger.debug("OMDb: no poster for %s", title)
        _cache[cache_key] = (time.time(), "")
        return None

    _cache[cache_key] = (time.time(), poster)
    return poster
