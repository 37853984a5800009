"""
Media Tracker AI — Enrichment Facade

Design patterns:
  - Facade: search(), get_trending() and check_updates() are the public
    entry points; each assembles the lower stages into one flow
  - Chain of Responsibility: phases execute sequentially, each passing
    results to the next
  - Strategy: fallback strategies when phases return empty results
  - Snapshot: settings are captured once per call and passed down

Pipeline flow:
  Grounding search → Conversation (tool calls) → Extraction → Filter → Posters
"""

from __future__ import annotations

import json
import logging
import re
import time
from datetime import date
from typing import Any, Dict, List, Optional, Tuple, Union

from media_tracker.agents.conversation import run_conversation
from media_tracker.agents.extraction import (
    build_records,
    drop_off_topic,
    extract_json_array,
    is_media_candidate,
    keep_media_types,
    process_search_result,
    records_from_search_results,
)
from media_tracker.agents.posters import resolve_posters
from media_tracker.clients.search import text_search
from media_tracker.clients.transport import TransportStrategy, get_transport
from media_tracker.config import SettingsSnapshot
from media_tracker.models import (
    ConversationMessage,
    MediaRecord,
    MediaType,
    SearchResult,
    UpdateInfo,
    is_placeholder,
    parse_flag,
)

logger = logging.getLogger(__name__)

JSON_ONLY = (
    " Please return strictly valid JSON. Do not use markdown code blocks."
    " Return ONLY a JSON array."
)

_NUMERIC_RE = re.compile(r"^[0-9\s]+$")

# ── Results cache (search only) ───────────────────────────

_results_cache: Dict[str, Tuple[float, List[MediaRecord]]] = {}


def _get_cached(key: str, ttl: float) -> Optional[List[MediaRecord]]:
    if key in _results_cache:
        ts, records = _results_cache[key]
        if time.time() - ts < ttl:
            return [r.model_copy(deep=True) for r in records]
        del _results_cache[key]
    return None


# ── Helpers ───────────────────────────────────────────────


def expand_query(query: str) -> str:
    """Short or purely numeric queries get media-type hints and exclusions."""
    q = query.strip()
    if len(q) < 3 or _NUMERIC_RE.match(q):
        return (
            f"{q} movie OR tv series OR novel OR comic OR album "
            "-news -review -price -iphone -apple -samsung -huawei"
        )
    return q


def _context_json(results: List[SearchResult]) -> str:
    return json.dumps([r.model_dump(exclude_none=True) for r in results], ensure_ascii=False)


def prefetch_images(results: List[SearchResult]) -> Dict[str, str]:
    """Images already present in search hits, keyed by raw and cleaned title."""
    images: Dict[str, str] = {}
    for result in results:
        if not (result.title and result.image):
            continue
        images[result.title.lower()] = result.image
        cleaned = process_search_result(result.title, result.snippet or "")["title"]
        images[cleaned.lower()] = result.image
    return images


def _requested_type(media_type: Union[str, MediaType, None]) -> Optional[MediaType]:
    if media_type is None or media_type == "All":
        return None
    return MediaType.parse(media_type)


def _system_message(snapshot: SettingsSnapshot) -> ConversationMessage:
    return ConversationMessage(role="system", content=snapshot.system_prompt + JSON_ONLY)


# ── Search ────────────────────────────────────────────────


def _search_prompt(query: str, requested: Optional[MediaType], context: str) -> str:
    prompt = f'Search for media works matching the query: "{query}".'
    if requested is not None:
        prompt += f' Strictly limit results to type: "{requested.value}".'
    else:
        prompt += " (books, movies, TV series, comics, short dramas)"
    prompt += (
        "\n[Constraint] Only return works (novels, movies, TV series, short dramas, "
        "comics, music albums). Do NOT include news, product reviews, comparisons, "
        "specs, prices, or phone/electronics items."
        "\n[PREFER] Use the web search tool; if unavailable, rely on the following "
        "candidate search results or internal knowledge to return a valid JSON array:\n"
        f"{context or '(no search results)'}\n"
        "Return ONLY a valid JSON array. Check metadata/pagemap for accurate dates. "
        "If nothing matches, return an empty array."
    )
    return prompt


async def search(
    query: str,
    media_type: Union[str, MediaType, None] = "All",
    *,
    snapshot: Optional[SettingsSnapshot] = None,
    transport: Optional[TransportStrategy] = None,
    resolve: bool = True,
) -> List[MediaRecord]:
    """
    Find media works matching a free-text query.

    With ``resolve=False`` records come back with placeholder (or prefetched)
    posters so the caller can patch them in via start_poster_resolution.
    """
    if not query.strip():
        return []
    t0 = time.perf_counter()
    snapshot = snapshot or SettingsSnapshot.capture()
    transport = transport or get_transport()
    requested = _requested_type(media_type)

    cache_key = f"{requested.value if requested else 'All'}_{query.strip().lower()}"
    cached = _get_cached(cache_key, snapshot.search_results_cache_ttl)
    if cached is not None:
        logger.info("Search cache HIT: %r", query[:60])
        # entries written by a resolve=False call still carry placeholders
        if resolve and any(is_placeholder(r.poster_url) for r in cached):
            await resolve_posters(cached, snapshot, transport)
            ts = _results_cache[cache_key][0]
            _results_cache[cache_key] = (ts, [r.model_copy(deep=True) for r in cached])
        return cached

    # ── Phase 1: Grounding search ─────────────────────────
    hits = await text_search(expand_query(query), snapshot, transport, force=True)
    context = [r for r in hits if is_media_candidate(r)]
    image_cache = prefetch_images(context)
    logger.info(
        "Phase 1: %d grounding results (%d media candidates), %d prefetched images",
        len(hits), len(context), len(image_cache),
    )

    # ── Phase 2: Conversation ─────────────────────────────
    messages = [
        _system_message(snapshot),
        ConversationMessage(
            role="user",
            content=_search_prompt(query, requested, _context_json(context) if context else ""),
        ),
    ]
    text = await run_conversation(messages, snapshot, transport, temperature=0.1, force_search=True)
    if not text:
        logger.info("Model gave no answer for %r", query[:60])
        return []

    # ── Phase 3: Extraction + filter ──────────────────────
    records = build_records(
        extract_json_array(text),
        default_type=requested or MediaType.OTHER,
        image_cache=image_cache,
    )
    records = keep_media_types(drop_off_topic(records))
    if not records:
        logger.info("No usable records extracted, falling back to search snippets")
        records = records_from_search_results(context)
        if resolve:
            await resolve_posters(records, snapshot, transport, image_cache=image_cache)
        return records

    # ── Phase 4: Posters ──────────────────────────────────
    if resolve:
        await resolve_posters(records, snapshot, transport, image_cache=image_cache)

    _results_cache[cache_key] = (time.time(), [r.model_copy(deep=True) for r in records])
    logger.info("Search complete: %d records in %d ms", len(records), (time.perf_counter() - t0) * 1000)
    return records


# ── Trending ──────────────────────────────────────────────


def _trending_prompt(today: date, context: str, custom: str) -> str:
    month = today.strftime("%B %Y")
    if custom.strip():
        return custom + (
            f"\n\n[System Note] Today's Date: {today.isoformat()}. Prefer using the "
            "provided 'web_search' tool to fetch the latest information; if unavailable, "
            "return quickly based on internal knowledge and verify later."
        )

    prompt = (
        f"Today is {today.isoformat()}. Recommend 4 trending movies, TV series, or dramas "
        "that have been updated or released within the last 2 months.\n\n"
    )
    if context:
        prompt += (
            "[IMPORTANT] Refer to the following search results (Real-time data):\n"
            f"{context}\n\n"
            "Requirements:\n"
            "1. Must be updated or released within the **last 2 months**.\n"
            "2. **MUST** prioritize selection from the search results above.\n"
        )
    else:
        prompt += (
            "[IMPORTANT] You MUST use the provided web search tool (web_search) to get "
            f'the latest information. Search query: "trending movies tv series {month}".\n\n'
            "Requirements:\n"
            "1. Must be updated or released within the **last 2 months**.\n"
            "2. Use your knowledge to find the most trending recent releases.\n"
        )
    prompt += (
        "3. If search results are insufficient, ensure recommendations are genuinely "
        "recent and trending.\n"
        "4. Do NOT recommend old content unless it has a very recent new season.\n"
        "5. releaseDate MUST be accurate. For TV Series, use the premiere date of the "
        "**LATEST SEASON**.\n"
        "6. Ensure latestUpdateInfo is accurate.\n"
        "7. Ensure release dates are factual. Do not invent future dates unless "
        "officially announced."
    )
    return prompt


async def get_trending(
    *,
    snapshot: Optional[SettingsSnapshot] = None,
    transport: Optional[TransportStrategy] = None,
    resolve: bool = True,
) -> List[MediaRecord]:
    """Recently released or updated titles, grounded on a dated web search."""
    t0 = time.perf_counter()
    snapshot = snapshot or SettingsSnapshot.capture()
    transport = transport or get_transport()
    today = date.today()
    month = today.strftime("%B %Y")

    # ── Phase 1: Grounding search (skipped for a custom prompt) ──
    context: List[SearchResult] = []
    if not snapshot.trending_prompt.strip():
        for q in (f"new movie releases {month}", f"best new tv shows {month}"):
            context = await text_search(q, snapshot, transport, force=True)
            if context:
                break
    image_cache = prefetch_images(context)

    # ── Phase 2: Conversation ─────────────────────────────
    prompt = _trending_prompt(today, _context_json(context) if context else "", snapshot.trending_prompt)
    prompt += (
        "\n\nIMPORTANT: ALWAYS return a valid JSON array, even if empty or with fewer "
        "items. Do NOT return markdown text or explanations outside the JSON."
    )
    messages = [_system_message(snapshot), ConversationMessage(role="user", content=prompt)]
    text = await run_conversation(messages, snapshot, transport, temperature=0.1, force_search=True)

    # ── Phase 3: Extraction (snippet fallback) ────────────
    records = build_records(extract_json_array(text), image_cache=image_cache) if text else []
    if not records:
        logger.info("Trending: no usable model answer, falling back to search snippets")
        records = records_from_search_results(context)

    # ── Phase 4: Posters ──────────────────────────────────
    if resolve and records:
        await resolve_posters(records, snapshot, transport, image_cache=image_cache)

    logger.info("Trending complete: %d records in %d ms", len(records), (time.perf_counter() - t0) * 1000)
    return records


# ── Update check ──────────────────────────────────────────


def _update_info(item: Dict[str, Any], title_to_id: Dict[str, str]) -> Optional[UpdateInfo]:
    title = item.get("title")
    if not isinstance(title, str):
        return None
    record_id = title_to_id.get(title.strip().lower())
    if record_id is None:
        return None
    return UpdateInfo(
        id=record_id,
        latest_update_info=str(item.get("latestUpdateInfo") or ""),
        is_ongoing=parse_flag(item.get("isOngoing")),
    )


async def check_updates(
    records: List[MediaRecord],
    *,
    snapshot: Optional[SettingsSnapshot] = None,
    transport: Optional[TransportStrategy] = None,
) -> List[UpdateInfo]:
    """Latest episode / chapter for each record, mapped back by title."""
    if not records:
        return []
    snapshot = snapshot or SettingsSnapshot.capture()
    transport = transport or get_transport()

    title_to_id = {r.title.strip().lower(): r.id for r in records}
    query_list = ", ".join(f'"{r.title}" ({r.type.value})' for r in records)
    prompt = (
        f"Please check the latest status for: {query_list}.\n"
        "Provide the absolute latest episode/chapter as of today.\n"
        "Return a JSON array with objects containing:\n"
        "- title: string (exact match)\n"
        '- latestUpdateInfo: string (e.g. "Season 4 Episode 8" or "Chapter 1052")\n'
        "- isOngoing: boolean (true if still updating)"
    )
    messages = [
        ConversationMessage(
            role="system",
            content="You are a media update tracker. Return ONLY raw JSON array. No markdown.",
        ),
        ConversationMessage(role="user", content=prompt),
    ]
    text = await run_conversation(messages, snapshot, transport, temperature=0.1)
    if not text:
        return []

    updates = [u for u in (_update_info(item, title_to_id) for item in extract_json_array(text)) if u]
    logger.info("Update check: %d / %d records matched", len(updates), len(records))
    return updates


# ── Daily greeting ────────────────────────────────────────

_greeting: Dict[str, str] = {}


async def daily_greeting(
    *,
    snapshot: Optional[SettingsSnapshot] = None,
    transport: Optional[TransportStrategy] = None,
) -> str:
    """Today's date plus a short quote; cached for the day, ISO date on failure."""
    today = date.today().isoformat()
    if today in _greeting:
        return _greeting[today]

    snapshot = snapshot or SettingsSnapshot.capture()
    messages = [
        ConversationMessage(role="system", content="You are a time announcement assistant."),
        ConversationMessage(
            role="user",
            content=(
                f"Today is {today}. Please tell me today's date followed by a very short "
                "inspiring quote about movies or life (max 10 words). "
                "Format: YYYY-MM-DD | Quote"
            ),
        ),
    ]
    try:
        text = await run_conversation(messages, snapshot, transport or get_transport(), temperature=0.7)
    except Exception as exc:
        logger.warning("Greeting generation failed: %s", exc)
        return today

    text = text.replace('"', "").strip()
    if not text:
        return today
    _greeting.clear()
    _greeting[today] = text
    return text
