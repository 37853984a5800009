"""
Media Tracker AI — Tool-Calling Conversation Engine

Design patterns:
  - State Machine: REQUEST_COMPLETION → (EXECUTE_TOOLS → REQUEST_COMPLETION)*
    → FINAL_ANSWER | TURN_BUDGET_EXCEEDED
  - Command: each tool call is dispatched by function name to a handler that
    produces exactly one tool message

Drives a bounded multi-turn exchange with the chat model, satisfying the
search tool calls it issues, until it produces a final text answer.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from media_tracker.clients.search import text_search
from media_tracker.clients.transport import TransportStrategy, get_transport
from media_tracker.concurrency import RateGate, call_with_retry
from media_tracker.config import SettingsSnapshot
from media_tracker.models import ConversationMessage, ToolCall

logger = logging.getLogger(__name__)

WEB_SEARCH = "web_search"
# Moonshot/Kimi builtin: the model searched on its own, we just echo
NATIVE_SEARCH_ECHO = "$web_search"

NO_RESULTS = "No relevant results found."
MISSING_QUERY = "Error: Missing query parameter."

WEB_SEARCH_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": WEB_SEARCH,
        "description": (
            "Search the internet for real-time information. Use this to get "
            "the latest media releases, news, and updates."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
            },
            "required": ["query"],
        },
    },
}


# ── Tool handlers ─────────────────────────────────────────


def _parse_query(arguments_json: str) -> str:
    try:
        args = json.loads(arguments_json or "{}")
    except json.JSONDecodeError as exc:
        logger.warning("Failed to parse tool arguments: %s", exc)
        return ""
    if not isinstance(args, dict):
        return ""
    query = args.get("query")
    return query.strip() if isinstance(query, str) else ""


async def _run_tool(
    call: ToolCall,
    snapshot: SettingsSnapshot,
    transport: TransportStrategy,
    force_search: bool,
) -> ConversationMessage:
    if call.function_name == NATIVE_SEARCH_ECHO:
        return ConversationMessage(
            role="tool",
            tool_call_id=call.id,
            name=NATIVE_SEARCH_ECHO,
            content=call.arguments_json,
        )

    if call.function_name == WEB_SEARCH:
        query = _parse_query(call.arguments_json)
        if not query:
            return ConversationMessage(role="tool", tool_call_id=call.id, content=MISSING_QUERY)
        results = await text_search(query, snapshot, transport, force=force_search)
        content = (
            json.dumps([r.model_dump(exclude_none=True) for r in results], ensure_ascii=False)
            if results else NO_RESULTS
        )
        return ConversationMessage(role="tool", tool_call_id=call.id, content=content)

    logger.warning("Model requested unknown tool %r", call.function_name)
    return ConversationMessage(
        role="tool",
        tool_call_id=call.id,
        content=f"Error: Unsupported tool {call.function_name}.",
    )


# ── Conversation loop ─────────────────────────────────────


async def run_conversation(
    messages: List[ConversationMessage],
    snapshot: SettingsSnapshot,
    transport: Optional[TransportStrategy] = None,
    *,
    temperature: float = 0.7,
    force_search: bool = False,
    gate: Optional[RateGate] = None,
) -> str:
    """
    Return the model's final text answer, or "" when there is none.

    Errors from the first completion request propagate; once the
    conversation is under way, failures end it with "".
    """
    transport = transport or get_transport()
    chat_config = snapshot.chat_config()
    if not chat_config.api_key:
        logger.warning("No chat model API key configured; skipping model call")
        return ""

    tools = [WEB_SEARCH_TOOL] if (snapshot.enable_search or force_search) else None
    conversation = list(messages)

    for turn in range(1, snapshot.max_turns + 1):

        async def _complete() -> ConversationMessage:
            return await transport.chat_completion(
                conversation, chat_config, temperature=temperature, tools=tools,
            )

        try:
            reply = await call_with_retry(
                _complete,
                gate=gate,
                max_attempts=snapshot.model_max_retries,
                base_delay=snapshot.model_retry_base_delay,
            )
        except Exception:
            if turn == 1:
                raise
            logger.exception("Completion failed on turn %d; ending conversation", turn)
            return ""

        if not reply.tool_calls:
            return reply.content or ""

        logger.info("Turn %d: model requested %d tool call(s)", turn, len(reply.tool_calls))
        conversation.append(reply)
        for call in reply.tool_calls:
            conversation.append(await _run_tool(call, snapshot, transport, force_search))

    logger.warning("Turn budget of %d exhausted without a final answer", snapshot.max_turns)
    return ""
