"""
Tests for the FastAPI endpoints.
"""

from __future__ import annotations

import json

import pytest
from fastapi.testclient import TestClient

from media_tracker.clients.transport import ModelCallError, set_transport
from media_tracker.models import MediaRecord, MediaType, SearchResult, UpdateInfo, placeholder_poster


@pytest.fixture
def client(monkeypatch):
    """Create a test client with a mocked facade."""

    async def _mock_search(query, media_type="All", **kwargs):
        if query == "fail":
            raise ModelCallError("unauthorized", 401)
        return [MediaRecord(
            title="Dune",
            type=MediaType.MOVIE,
            release_date="2021",
            poster_url="https://img.example.com/dune.jpg",
        )]

    async def _mock_trending(**kwargs):
        return [
            MediaRecord(title="Shogun", type=MediaType.TV_SERIES, poster_url=placeholder_poster(MediaType.TV_SERIES)),
            MediaRecord(title="Wicked", type=MediaType.MOVIE, poster_url=placeholder_poster(MediaType.MOVIE)),
        ]

    async def _mock_updates(records, **kwargs):
        return [UpdateInfo(id=r.id, latest_update_info="Chapter 1130", is_ongoing=True) for r in records]

    async def _mock_greeting(**kwargs):
        return "2026-10-16 | Every frame tells a story"

    monkeypatch.setattr("media_tracker.pipeline.search", _mock_search)
    monkeypatch.setattr("media_tracker.pipeline.get_trending", _mock_trending)
    monkeypatch.setattr("media_tracker.pipeline.check_updates", _mock_updates)
    monkeypatch.setattr("media_tracker.pipeline.daily_greeting", _mock_greeting)

    from media_tracker.main import app
    return TestClient(app)


def test_health(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] in ("ok", "degraded")
    assert "runtime_mode" in data
    assert "search_text_provider" in data


def test_search_success(client):
    resp = client.post("/api/search", json={"query": "Dune", "type": "Movie"})
    assert resp.status_code == 200
    data = resp.json()
    assert len(data) == 1
    assert data[0]["title"] == "Dune"
    assert data[0]["posterUrl"] == "https://img.example.com/dune.jpg"
    assert data[0]["status"] == "To Watch"
    assert data[0]["releaseDate"] == "2021"


def test_search_empty_query(client):
    resp = client.post("/api/search", json={"query": "   "})
    assert resp.status_code == 422


def test_search_too_long_query(client):
    resp = client.post("/api/search", json={"query": "x" * 501})
    assert resp.status_code == 422


def test_search_model_failure_is_503(client):
    resp = client.post("/api/search", json={"query": "fail"})
    assert resp.status_code == 503


def test_trending(client):
    resp = client.get("/api/trending")
    assert resp.status_code == 200
    assert [r["title"] for r in resp.json()] == ["Shogun", "Wicked"]


def test_trending_stream_patches_posters(client, make_transport):
    set_transport(make_transport(
        search=lambda query, config: [SearchResult(image=f"https://img.example.com/{len(query)}.jpg")],
    ))

    resp = client.get("/api/trending/stream")

    assert resp.status_code == 200
    body = resp.text
    assert body.index("event: records") < body.index("event: poster") < body.index("event: done")
    assert body.count("event: poster") == 2
    posters = [
        json.loads(line[len("data: "):])
        for line in body.splitlines()
        if line.startswith('data: {"index"')
    ]
    assert sorted(p["index"] for p in posters) == [0, 1]
    assert all(p["posterUrl"].startswith("https://img.example.com/") for p in posters)


def test_updates(client):
    resp = client.post("/api/updates", json={"items": [
        {"id": "abc", "title": "One Piece", "type": "Comic"},
    ]})
    assert resp.status_code == 200
    assert resp.json() == [{"id": "abc", "latestUpdateInfo": "Chapter 1130", "isOngoing": True}]


def test_greeting(client):
    resp = client.get("/api/greeting")
    assert resp.status_code == 200
    assert resp.json() == {"greeting": "2026-10-16 | Every frame tells a story"}


def test_root_serves_html(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert "Media Tracker AI" in resp.text
