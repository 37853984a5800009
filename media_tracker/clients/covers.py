"""
Media Tracker AI — Cover art clients

Keyless cover lookups for media OMDb does not cover:
  - OpenLibrary (books, comics)
  - MusicBrainz + Cover Art Archive (music releases)

Design patterns:
  - Repository: abstracts both APIs behind two small functions
  - Adapter: normalizes each API to a single image URL
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# ── Shared client ─────────────────────────────────────────

_client: Optional[httpx.AsyncClient] = None


async def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=5.0, read=10.0, write=5.0, pool=5.0),
            # MusicBrainz rejects anonymous clients
            headers={"User-Agent": "MediaTrackerAI/1.0 (media enrichment service)"},
            follow_redirects=True,
        )
    return _client


async def close_client() -> None:
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


# ── OpenLibrary ───────────────────────────────────────────


async def get_book_cover(title: str, author: str = "") -> Optional[str]:
    params = {"title": title, "limit": 1}
    if author:
        params["author"] = author
    try:
        client = await _get_client()
        resp = await client.get("https://openlibrary.org/search.json", params=params)
        resp.raise_for_status()
        docs = resp.json().get("docs", [])
    except Exception as exc:
        logger.debug("OpenLibrary lookup failed for %r: %s", title, exc)
        return None

    if not docs:
        return None
    doc = docs[0]
    if doc.get("cover_i"):
        return f"https://covers.openlibrary.org/b/id/{doc['cover_i']}-L.jpg"
    if doc.get("isbn"):
        return f"https://covers.openlibrary.org/b/isbn/{doc['isbn'][0]}-L.jpg"
    return None


# ── MusicBrainz + Cover Art Archive ───────────────────────


async def get_album_cover(title: str, artist: str = "") -> Optional[str]:
    query = f'release:"{title}"'
    if artist:
        query += f' AND artist:"{artist}"'
    try:
        client = await _get_client()
        resp = await client.get(
            "https://musicbrainz.org/ws/2/release",
            params={"query": query, "fmt": "json", "limit": 1},
        )
        resp.raise_for_status()
        releases = resp.json().get("releases", [])
        if not releases or not releases[0].get("id"):
            return None

        art = await client.get(f"https://coverartarchive.org/release/{releases[0]['id']}")
        if art.status_code != 200:
            return None
        images = art.json().get("images", [])
    except Exception as exc:
        logger.debug("MusicBrainz lookup failed for %r: %s", title, exc)
        return None

    return images[0].get("image") if images else None
