"""
Shared fixtures: a scripted transport, a test settings snapshot, and
reset of every module-level cache between tests.
"""

from __future__ import annotations

import inspect
from typing import Any, Callable, List, Optional

import pytest

from media_tracker import concurrency, pipeline
from media_tracker.clients import omdb
from media_tracker.clients import search as search_client
from media_tracker.clients.transport import TransportStrategy, set_transport
from media_tracker.config import SettingsSnapshot
from media_tracker.models import ConversationMessage, SearchResult


class FakeTransport(TransportStrategy):
    """Scripted model replies and canned search results; records every call."""

    def __init__(
        self,
        replies: Optional[List[Any]] = None,
        search: Optional[Callable[..., Any]] = None,
    ) -> None:
        self.replies = list(replies or [])
        self.search = search or (lambda query, config: [])
        self.chat_calls: List[dict] = []
        self.search_calls: List[tuple] = []

    async def chat_completion(self, messages, config, *, temperature, tools=None):
        self.chat_calls.append({
            "messages": list(messages),
            "tools": tools,
            "temperature": temperature,
            "config": config,
        })
        reply = self.replies.pop(0) if self.replies else ConversationMessage(role="assistant", content="")
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return ConversationMessage(role="assistant", content=reply)
        return reply

    async def web_search(self, query, config) -> List[SearchResult]:
        self.search_calls.append((query, config))
        results = self.search(query, config)
        if inspect.isawaitable(results):
            results = await results
        return results


@pytest.fixture(autouse=True)
def _reset_state(monkeypatch):
    search_client._cache.clear()
    omdb._cache.clear()
    pipeline._results_cache.clear()
    pipeline._greeting.clear()
    monkeypatch.setattr(concurrency, "_gate", None)
    set_transport(None)
    yield
    set_transport(None)


@pytest.fixture
def snapshot() -> SettingsSnapshot:
    return SettingsSnapshot(
        llm_api_key="test-key",
        model_retry_base_delay=0.0,
        search_provider="duckduckgo",
        poster_search_timeout=0.2,
        poster_metadata_timeout=0.1,
    )


@pytest.fixture
def make_transport():
    return FakeTransport
