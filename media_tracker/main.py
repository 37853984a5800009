"""
Media Tracker AI — FastAPI Application

REST endpoints over the enrichment facade, plus an SSE stream that
delivers trending records first and patches posters in as they resolve.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Tuple

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse
from sse_starlette.sse import EventSourceResponse

from media_tracker import pipeline
from media_tracker.agents.posters import start_poster_resolution
from media_tracker.clients import covers, omdb
from media_tracker.clients import search as search_client
from media_tracker.clients.transport import close_transport
from media_tracker.config import SettingsSnapshot, settings
from media_tracker.models import MediaRecord, SearchRequest, UpdateInfo, UpdatesRequest

logger = logging.getLogger(__name__)


# ── Lifespan: startup/shutdown ────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Initialize and tear down shared resources."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
    )
    logger.info("Media Tracker AI starting up…")
    logger.info("   Runtime: %s", settings.runtime_mode)
    logger.info("   Model: %s  base: %s", settings.llm_model, settings.llm_base_url)
    logger.info(
        "   Search: %s (%s)",
        settings.search_provider,
        "enabled" if settings.enable_search else "disabled",
    )

    yield  # app runs here

    logger.info("Media Tracker AI shutting down…")
    await close_transport()
    await search_client.close_client()
    await omdb.close_client()
    await covers.close_client()


# ── App instance ──────────────────────────────────────────

app = FastAPI(
    title="Media Tracker AI",
    version="1.0.0",
    description="AI-assisted media search, trending and update tracking",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Logging middleware ────────────────────────────────────


@app.middleware("http")
async def log_requests(request: Request, call_next):
    t0 = time.perf_counter()
    response = await call_next(request)
    elapsed = (time.perf_counter() - t0) * 1000
    logger.info(
        "%s %s → %d (%.0f ms)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed,
    )
    return response


# ── Health endpoint ───────────────────────────────────────


@app.get("/api/health")
async def health():
    """Configuration health: which features have the credentials they need."""
    snapshot = SettingsSnapshot.capture()
    chat = snapshot.chat_config()
    search_cfg = snapshot.search_config()
    status = {
        "status": "ok" if chat.api_key else "degraded",
        "runtime_mode": snapshot.runtime_mode,
        "model": chat.model,
        "base_url": chat.base_url,
        "model_key": bool(chat.api_key),
        "search_enabled": snapshot.enable_search,
        "search_provider": search_cfg.provider,
        "search_text_provider": search_client.select_provider(search_cfg),
        "search_image_provider": search_client.select_provider(snapshot.search_config("image")),
        "omdb_key": bool(snapshot.omdb_key()),
    }
    return status


# ── Search ────────────────────────────────────────────────


@app.post("/api/search", response_model=List[MediaRecord])
async def search(body: SearchRequest):
    """Search media works by free-text query, optionally restricted to one type."""
    if not body.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")
    try:
        return await pipeline.search(body.query, body.type)
    except Exception as exc:
        logger.exception("Search pipeline failed")
        raise HTTPException(
            status_code=503,
            detail=f"The service could not complete the request: {exc}",
        )


# ── Trending ──────────────────────────────────────────────


@app.get("/api/trending", response_model=List[MediaRecord])
async def trending():
    try:
        return await pipeline.get_trending()
    except Exception as exc:
        logger.exception("Trending pipeline failed")
        raise HTTPException(
            status_code=503,
            detail=f"The service could not complete the request: {exc}",
        )


def _record_json(records: List[MediaRecord]) -> str:
    return json.dumps([r.model_dump(by_alias=True, mode="json") for r in records], ensure_ascii=False)


@app.get("/api/trending/stream")
async def trending_stream():
    """
    Trending over Server-Sent Events.

    Sends the records with placeholder posters first, then one ``poster``
    event per record as its image resolves, then ``done``. A client that
    disconnects early leaves poster resolution to finish in the background.
    """
    snapshot = SettingsSnapshot.capture()

    async def event_generator() -> AsyncIterator[dict]:
        try:
            records = await pipeline.get_trending(snapshot=snapshot, resolve=False)
        except Exception as exc:
            logger.exception("Trending pipeline failed")
            yield {"event": "error", "data": json.dumps({"detail": str(exc)})}
            return

        yield {"event": "records", "data": _record_json(records)}

        queue: "asyncio.Queue[Tuple[int, MediaRecord]]" = asyncio.Queue()
        task = start_poster_resolution(
            records, snapshot, on_resolved=lambda i, r: queue.put_nowait((i, r)),
        )

        pending = len(records)
        while pending:
            if not queue.empty():
                index, record = queue.get_nowait()
            elif task.done():
                break
            else:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter not in done:
                    getter.cancel()
                    continue
                index, record = getter.result()
            pending -= 1
            yield {
                "event": "poster",
                "data": json.dumps({"index": index, "id": record.id, "posterUrl": record.poster_url}),
            }

        yield {"event": "done", "data": json.dumps({"count": len(records)})}

    return EventSourceResponse(event_generator())


# ── Update check ──────────────────────────────────────────


@app.post("/api/updates", response_model=List[UpdateInfo])
async def updates(body: UpdatesRequest):
    """Latest episode / chapter info for records of the user's collection."""
    try:
        return await pipeline.check_updates(body.items)
    except Exception as exc:
        logger.exception("Update check failed")
        raise HTTPException(
            status_code=503,
            detail=f"The service could not complete the request: {exc}",
        )


# ── Greeting ──────────────────────────────────────────────


@app.get("/api/greeting")
async def greeting():
    return {"greeting": await pipeline.daily_greeting()}


@app.get("/", response_class=HTMLResponse)
async def root():
    return HTMLResponse(
        content="""<!DOCTYPE html>
<html><head><meta charset="utf-8">
<title>Media Tracker AI API</title>
<style>body{font-family:system-ui;background:#1a1a1a;color:#e2e8f0;display:flex;
justify-content:center;align-items:center;height:100vh;margin:0}
.card{text-align:center;padding:2rem;border-radius:1rem;background:#262626}
a{color:#60a5fa;text-decoration:none}</style></head>
<body><div class="card">
<h1>Media Tracker AI</h1>
<p><a href="/docs">API Docs</a></p>
</div></body></html>"""
    )
