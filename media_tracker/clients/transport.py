"""
Media Tracker AI — Transport strategy

Design patterns:
  - Strategy: the "talk to the outside world" part of the pipeline is chosen
    once at startup; nothing downstream checks the runtime environment
  - Adapter: host RPC responses are normalized to the same shapes the direct
    transport produces

DirectHttpTransport reaches the model through LangChain and the search
providers over httpx. HostRpcTransport hands both to the embedding host as
opaque ``invoke(command, args) -> str`` calls (``ai_chat`` / ``web_search``).
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from media_tracker.models import ChatConfig, ConversationMessage, SearchConfig, SearchResult, ToolCall

logger = logging.getLogger(__name__)

InvokeFn = Callable[[str, Dict[str, Any]], Awaitable[str]]


class ModelCallError(Exception):
    """A model completion failed; carries the HTTP status when one is known."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @classmethod
    def from_message(cls, message: str) -> "ModelCallError":
        match = re.search(r"\((\d{3})\)", message) or re.search(r"\b(4\d\d|5\d\d)\b", message)
        return cls(message, int(match.group(1)) if match else None)


# ── Strategy interface ────────────────────────────────────


class TransportStrategy(ABC):
    """Outbound model + search calls for one runtime environment."""

    #: True when running inside the host shell (no direct outbound fetches)
    is_host: bool = False

    @abstractmethod
    async def chat_completion(
        self,
        messages: List[ConversationMessage],
        config: ChatConfig,
        *,
        temperature: float,
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ConversationMessage:
        """Request one completion; returns the assistant message."""

    @abstractmethod
    async def web_search(self, query: str, config: SearchConfig) -> List[SearchResult]:
        """Run one provider search; may raise, the router absorbs errors."""

    async def aclose(self) -> None:
        return None


class DirectHttpTransport(TransportStrategy):
    is_host = False

    async def chat_completion(self, messages, config, *, temperature, tools=None):
        from media_tracker.clients import chat_completion

        return await chat_completion(messages, config, temperature=temperature, tools=tools)

    async def web_search(self, query, config):
        from media_tracker.clients.search import dispatch_direct

        return await dispatch_direct(query, config)

    async def aclose(self) -> None:
        from media_tracker.clients import covers, omdb, search

        await search.close_client()
        await omdb.close_client()
        await covers.close_client()


class HostRpcTransport(TransportStrategy):
    is_host = True

    def __init__(self, invoke: InvokeFn) -> None:
        self._invoke = invoke

    async def chat_completion(self, messages, config, *, temperature, tools=None):
        args = {
            "messages": [m.to_wire() for m in messages],
            "temperature": temperature,
            "tools": tools or None,
            "config": {"model": config.model, "baseURL": config.base_url, "apiKey": config.api_key},
        }
        try:
            raw = await self._invoke("ai_chat", args)
        except ModelCallError:
            raise
        except Exception as exc:
            raise ModelCallError.from_message(str(exc)) from exc
        try:
            payload = json.loads(raw)
        except (TypeError, json.JSONDecodeError):
            payload = raw
        return normalize_assistant_message(payload)

    async def web_search(self, query, config):
        raw = await self._invoke("web_search", {"query": query, "config": config.to_host_config()})
        items = json.loads(raw) if raw else []
        if not isinstance(items, list):
            return []
        return [SearchResult(**_pick_result_fields(i)) for i in items if isinstance(i, dict)]


# ── Response normalization ───────────────────────────────


def _pick_result_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (str(item[k]) if item.get(k) else None) for k in ("title", "snippet", "link", "image")}


def _parts_text(parts: List[Any]) -> str:
    return "".join(p if isinstance(p, str) else str((p or {}).get("text", "")) for p in parts)


def _unwrap(payload: Any) -> Dict[str, Any]:
    """Find the assistant message inside the many shapes hosts return."""
    if not payload:
        return {"content": ""}
    if isinstance(payload, str):
        return {"content": payload}
    if not isinstance(payload, dict):
        return {"content": ""}
    choices = payload.get("choices")
    if isinstance(choices, list):
        if not choices:
            return {"content": ""}
        first = choices[0] or {}
        return first.get("message") or first.get("delta") or first
    for wrapper in ("result", "data"):
        if payload.get(wrapper):
            return _unwrap(payload[wrapper])
    if isinstance(payload.get("message"), dict):
        return payload["message"]
    if isinstance(payload.get("output_text"), str):
        return {"content": payload["output_text"]}
    if isinstance(payload.get("content"), (str, list)):
        return payload
    return {"content": ""}


def normalize_assistant_message(payload: Any) -> ConversationMessage:
    message = _unwrap(payload)
    content = message.get("content")
    if isinstance(content, list):
        content = _parts_text(content)
    elif not isinstance(content, str):
        content = ""

    raw_calls = message.get("tool_calls") or []
    if not raw_calls and isinstance(message.get("function_call"), dict):
        raw_calls = [{"id": "fn", "type": "function", "function": message["function_call"]}]
    tool_calls = [ToolCall.from_wire(tc) for tc in raw_calls if isinstance(tc, dict)]
    return ConversationMessage(role="assistant", content=content, tool_calls=tool_calls)


# ── Host bridge over HTTP ─────────────────────────────────


def http_bridge_invoke(base_url: str) -> InvokeFn:
    """Invoke function that posts each command to a host bridge endpoint."""

    async def invoke(command: str, args: Dict[str, Any]) -> str:
        async with httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(connect=10.0, read=120.0, write=10.0, pool=10.0),
        ) as client:
            resp = await client.post(f"/invoke/{command}", json=args)
        if resp.status_code >= 400:
            raise ModelCallError(f"Host error ({resp.status_code}): {resp.text}", resp.status_code)
        return resp.text

    return invoke


# ── Selection (once per process) ─────────────────────────

_transport: Optional[TransportStrategy] = None


def build_transport(runtime_mode: str, host_bridge_url: Optional[str] = None) -> TransportStrategy:
    if runtime_mode == "host":
        if not host_bridge_url:
            raise ValueError("runtime_mode=host requires host_bridge_url (or pass a HostRpcTransport)")
        return HostRpcTransport(http_bridge_invoke(host_bridge_url))
    return DirectHttpTransport()


def get_transport() -> TransportStrategy:
    global _transport
    if _transport is None:
        from media_tracker.config import settings

        _transport = build_transport(settings.runtime_mode, settings.host_bridge_url)
        logger.info("Transport selected: %s", type(_transport).__name__)
    return _transport


def set_transport(transport: Optional[TransportStrategy]) -> None:
    """Install a transport (e.g. a HostRpcTransport with the host's own invoke)."""
    global _transport
    _transport = transport


async def close_transport() -> None:
    global _transport
    if _transport is not None:
        await _transport.aclose()
        _transport = None
