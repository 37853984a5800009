"""
Media Tracker AI — Structured Extraction

Recovers a JSON array of media records from free-text model answers.
Models fence their JSON in markdown, wrap it in prose, or get cut off
mid-array; the parser tolerates all three.

Also builds records straight from raw search results when the model
produced nothing usable.
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from media_tracker.models import MediaRecord, MediaType, SearchResult, placeholder_poster

logger = logging.getLogger(__name__)

_ARRAY_RE = re.compile(r"\[\s*\{.*\}\s*\]", re.DOTALL)
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")

NEGATIVE_KEYWORDS = (
    "iphone", "apple", "samsung", "huawei", "vs", "review", "price", "spec",
    "launch", "press", "event", "news", "rumor",
)

# Substrings, so "movies" and "seasons" count
POSITIVE_KEYWORDS = (
    "movie", "film", "tv series", "season", "episode", "novel", "book",
    "comic", "manga", "album", "music", "soundtrack", "ost",
)

SEARCHABLE_TYPES = frozenset(t for t in MediaType if t is not MediaType.OTHER)

# Fields the pipeline assigns itself, whatever the model sent
_PIPELINE_OWNED = frozenset({
    "id", "posterUrl", "poster_url", "userRating", "user_rating",
    "status", "addedAt", "added_at",
})


# ── JSON recovery ─────────────────────────────────────────


def _candidate(text: str) -> str:
    match = _ARRAY_RE.search(text)
    if match:
        return match.group(0)
    return _FENCE_RE.sub("", text).strip()


def _as_objects(data: Any) -> List[Dict[str, Any]]:
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def extract_json_array(text: Optional[str]) -> List[Dict[str, Any]]:
    """
    Pull a list of JSON objects out of a model answer.

    1. greedy ``[ { ... } ]`` match, else the fence-stripped text
    2. anything not starting with ``[`` or ``{`` is not structured data
    3. strict parse, then one retry cut at the last ``}`` and closed with ``]``
    """
    if not text:
        return []
    candidate = _candidate(text)
    if not candidate.startswith(("[", "{")):
        logger.warning("Model returned non-JSON response: %s", text[:200])
        return []

    try:
        return _as_objects(json.loads(candidate))
    except json.JSONDecodeError as exc:
        logger.info("JSON parse failed (%s), attempting truncation recovery", exc)

    last_brace = candidate.rfind("}")
    if last_brace <= 0:
        return []
    try:
        return _as_objects(json.loads(candidate[: last_brace + 1] + "]"))
    except json.JSONDecodeError as exc:
        logger.error("Failed to recover JSON: %s", exc)
        return []


# ── Record building ───────────────────────────────────────


def build_records(
    items: Sequence[Dict[str, Any]],
    *,
    default_type: MediaType = MediaType.OTHER,
    image_cache: Optional[Dict[str, str]] = None,
) -> List[MediaRecord]:
    """
    Turn raw model objects into MediaRecords with fresh ids and placeholder
    posters (or a pre-fetched image when one is cached for the title).
    """
    records: List[MediaRecord] = []
    for item in items:
        data = {k: v for k, v in item.items() if k not in _PIPELINE_OWNED}
        if not data.get("type"):
            data["type"] = default_type
        try:
            record = MediaRecord.model_validate(data)
        except ValidationError as exc:
            logger.warning("Skipping malformed record %s — %s", str(item)[:120], exc.errors()[:1])
            continue
        if not record.title.strip():
            continue
        cached = (image_cache or {}).get(record.title.lower())
        record.poster_url = cached or placeholder_poster(record.type)
        records.append(record)
    return records


def drop_off_topic(records: List[MediaRecord]) -> List[MediaRecord]:
    """Remove gadget / news items the model sometimes mixes in."""
    kept = []
    for record in records:
        text = f"{record.title} {record.description}".lower()
        words = set(re.findall(r"[a-z]+", text))
        if any(k in words for k in NEGATIVE_KEYWORDS):
            logger.debug("Dropping off-topic record %r", record.title)
            continue
        kept.append(record)
    return kept


def keep_media_types(records: List[MediaRecord]) -> List[MediaRecord]:
    """Search answers only keep the tracked media types; games and the like go."""
    return [r for r in records if r.type in SEARCHABLE_TYPES]


def is_media_candidate(result: SearchResult) -> bool:
    """A search hit that reads like a media work and not like gadget news."""
    text = f"{result.title or ''} {result.snippet or ''}".lower()
    if not any(k in text for k in POSITIVE_KEYWORDS):
        return False
    words = set(re.findall(r"[a-z]+", text))
    return not any(k in words for k in NEGATIVE_KEYWORDS)


# ── Raw search-result fallback ────────────────────────────


def process_search_result(title: str, snippet: str) -> Dict[str, Any]:
    """Clean a search-result title and infer its year and media type."""
    clean = re.sub(r" - .*$", "", title)
    clean = re.sub(r" \| .*$", "", clean)
    clean = re.sub(r"_.*$", "", clean)
    clean = re.sub(r"\.\.\.$", "", clean).strip()

    year = str(datetime.now().year)
    match = _YEAR_RE.search(title) or _YEAR_RE.search(snippet)
    if match:
        year = match.group(1)
        clean = clean.replace(f"({year})", "").strip()

    lower = f"{title} {snippet}".lower()
    if any(k in lower for k in ("season", "series", "episode", "tv show")):
        media_type = MediaType.TV_SERIES
    elif "game" in lower:
        media_type = MediaType.OTHER
    elif "book" in lower or "novel" in lower:
        media_type = MediaType.BOOK
    else:
        media_type = MediaType.MOVIE

    return {"title": clean, "year": year, "type": media_type}


def records_from_search_results(results: Sequence[SearchResult], limit: int = 10) -> List[MediaRecord]:
    """Fallback records built from search snippets, deduplicated by cleaned title."""
    unique: Dict[str, SearchResult] = {}
    for result in results:
        key = process_search_result(result.title or "", "")["title"].lower()
        if key and key not in unique:
            unique[key] = result

    records: List[MediaRecord] = []
    for result in list(unique.values())[:limit]:
        info = process_search_result(result.title or "", result.snippet or "")
        records.append(MediaRecord(
            title=info["title"],
            type=info["type"],
            description=result.snippet or "",
            release_date=info["year"],
            is_ongoing=info["type"] == MediaType.TV_SERIES,
            poster_url=result.image or placeholder_poster(info["type"]),
        ))
    logger.info("Built %d fallback records from %d search results", len(records), len(results))
    return records
