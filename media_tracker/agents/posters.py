"""
Media Tracker AI — Poster Resolution Pipeline

Design patterns:
  - Worker Pool: a fixed number of workers drain a shared queue, capping
    simultaneous image lookups regardless of batch size
  - Race against a timer: search lookup (5 s) then metadata lookup (1 s)
  - Observer: on_resolved is notified per record, so callers can either
    await the whole batch or patch posters in as they land

Resolves a poster for each record: batch cache → image search → type-specific
metadata database → placeholder.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from media_tracker.clients import covers, omdb
from media_tracker.clients.search import image_search
from media_tracker.clients.transport import TransportStrategy, get_transport
from media_tracker.concurrency import run_in_background, with_timeout
from media_tracker.config import SettingsSnapshot
from media_tracker.models import MediaRecord, MediaType, is_placeholder, placeholder_poster

logger = logging.getLogger(__name__)

OnResolved = Callable[[int, MediaRecord], Union[None, Awaitable[None]]]

_BLOCKED_IMAGE_HOSTS = ("instagram.com", "facebook.com", "twitter.com", "x.com")


def _usable_image(url: Optional[str]) -> bool:
    if not url:
        return False
    lower = url.lower()
    return not any(host in lower for host in _BLOCKED_IMAGE_HOSTS)


# ── Lookups ───────────────────────────────────────────────


async def search_poster(
    record: MediaRecord,
    snapshot: SettingsSnapshot,
    transport: Optional[TransportStrategy] = None,
) -> Optional[str]:
    """First usable image from an image search for the title."""
    query = f'"{record.title}" {record.type.value} poster'
    results = await image_search(query, snapshot, transport)
    for result in results:
        if _usable_image(result.image):
            return result.image
    return None


async def metadata_poster(record: MediaRecord, snapshot: SettingsSnapshot) -> Optional[str]:
    """Secondary lookup in a metadata database chosen by media type."""
    if record.type in (MediaType.BOOK, MediaType.COMIC):
        return await covers.get_book_cover(record.title, record.director_or_author)
    if record.type == MediaType.MUSIC:
        return await covers.get_album_cover(record.title, record.director_or_author)
    return await omdb.get_poster(record.title, record.year, api_key=snapshot.omdb_key())


async def resolve_one(
    record: MediaRecord,
    snapshot: SettingsSnapshot,
    transport: Optional[TransportStrategy] = None,
    image_cache: Optional[Dict[str, str]] = None,
) -> str:
    """Poster URL for one record; never raises, never exceeds both timeouts."""
    if not is_placeholder(record.poster_url):
        return record.poster_url or ""

    key = record.title.lower()
    if image_cache is not None and image_cache.get(key):
        return image_cache[key]

    image = await with_timeout(
        search_poster(record, snapshot, transport), snapshot.poster_search_timeout,
    )
    if not image:
        image = await with_timeout(
            metadata_poster(record, snapshot), snapshot.poster_metadata_timeout,
        )

    if image:
        if image_cache is not None:
            image_cache[key] = image
        return image
    return placeholder_poster(record.type)


# ── Batch resolution ──────────────────────────────────────


async def resolve_posters(
    records: List[MediaRecord],
    snapshot: SettingsSnapshot,
    transport: Optional[TransportStrategy] = None,
    *,
    image_cache: Optional[Dict[str, str]] = None,
    on_resolved: Optional[OnResolved] = None,
) -> List[MediaRecord]:
    """
    Fill ``poster_url`` on every record in place and return the list.

    Awaiting this blocks until every poster is settled; pass ``on_resolved``
    (or use start_poster_resolution) to patch records in as they complete.
    """
    if not records:
        return records
    transport = transport or get_transport()
    cache: Dict[str, str] = image_cache if image_cache is not None else {}

    queue: asyncio.Queue = asyncio.Queue()
    for index in range(len(records)):
        queue.put_nowait(index)

    async def worker() -> None:
        while True:
            try:
                index = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            record = records[index]
            try:
                record.poster_url = await resolve_one(record, snapshot, transport, cache)
            except Exception as exc:
                logger.warning("Poster resolution failed for %r: %s", record.title, exc)
                record.poster_url = placeholder_poster(record.type)
            if on_resolved is not None:
                try:
                    outcome = on_resolved(index, record)
                    if inspect.isawaitable(outcome):
                        await outcome
                except Exception as exc:
                    logger.warning("Poster callback failed for %r: %s", record.title, exc)

    n_workers = max(1, min(snapshot.poster_workers, len(records)))
    await asyncio.gather(*(worker() for _ in range(n_workers)))

    resolved = sum(1 for r in records if not is_placeholder(r.poster_url))
    logger.info("Resolved %d / %d posters", resolved, len(records))
    return records


def start_poster_resolution(
    records: List[MediaRecord],
    snapshot: SettingsSnapshot,
    transport: Optional[TransportStrategy] = None,
    *,
    image_cache: Optional[Dict[str, str]] = None,
    on_resolved: Optional[OnResolved] = None,
) -> "asyncio.Task[Any]":
    """Resolve-then-patch: return the placeholder list now, patch posters later."""
    return run_in_background(resolve_posters(
        records, snapshot, transport, image_cache=image_cache, on_resolved=on_resolved,
    ))
