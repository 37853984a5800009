"""
Media Tracker AI — LLM Client (LangChain + OpenAI-compatible endpoint)

Factory + Adapter pattern: wraps LangChain's ChatOpenAI so the conversation
engine can speak plain OpenAI-style messages (including tool calls) to any
OpenAI-compatible chat endpoint (Moonshot/Kimi, OpenAI, DeepSeek, ...).

Design patterns used:
  - Factory: create_llm() builds configured ChatOpenAI instances
  - Adapter: chat_completion() converts our messages to LangChain and the
    AIMessage back to our ConversationMessage
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage
from langchain_openai import ChatOpenAI

from media_tracker.models import ChatConfig, ConversationMessage, ToolCall

logger = logging.getLogger(__name__)

# ── LLM Factory ──────────────────────────────────────────


def create_llm(
    config: ChatConfig,
    *,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
) -> ChatOpenAI:
    """
    Factory: create a ChatOpenAI instance for one completion request.

    SDK retries are disabled: rate-limit retries belong to our own policy,
    which has to pass every attempt through the rate gate.
    """
    return ChatOpenAI(
        model=config.model,
        openai_api_key=config.api_key,
        openai_api_base=config.base_url,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=0,
        timeout=120,
    )


# ── Message conversion helpers ───────────────────────────


def _to_langchain_messages(messages: List[ConversationMessage]) -> List[BaseMessage]:
    """Convert our messages to LangChain message objects."""
    lc_msgs: List[BaseMessage] = []
    for msg in messages:
        content = msg.content or ""
        if msg.role == "system":
            lc_msgs.append(SystemMessage(content=content))
        elif msg.role == "user":
            lc_msgs.append(HumanMessage(content=content))
        elif msg.role == "assistant":
            extra: Dict[str, Any] = {}
            if msg.tool_calls:
                # OpenAI wire shape; LangChain derives AIMessage.tool_calls from it
                extra["tool_calls"] = [tc.to_wire() for tc in msg.tool_calls]
            lc_msgs.append(AIMessage(content=content, additional_kwargs=extra))
        elif msg.role == "tool":
            lc_msgs.append(ToolMessage(
                content=content,
                tool_call_id=msg.tool_call_id or "",
                name=msg.name,
            ))
    return lc_msgs


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "".join(p if isinstance(p, str) else str(p.get("text", "")) for p in content)
    return ""


def _from_ai_message(response: AIMessage) -> ConversationMessage:
    """Adapt a LangChain AIMessage to our assistant ConversationMessage."""
    raw_calls = response.additional_kwargs.get("tool_calls") or []
    if raw_calls:
        tool_calls = [ToolCall.from_wire(tc) for tc in raw_calls]
    else:
        tool_calls = [
            ToolCall(
                id=tc.get("id") or "fn",
                function_name=tc["name"],
                arguments_json=json.dumps(tc.get("args") or {}, ensure_ascii=False),
            )
            for tc in (response.tool_calls or [])
        ]
    return ConversationMessage(
        role="assistant",
        content=_strip_thinking(_content_text(response.content)),
        tool_calls=tool_calls,
    )


# ── Core chat completion (non-streaming) ──────────────────


async def chat_completion(
    messages: List[ConversationMessage],
    config: ChatConfig,
    *,
    temperature: float = 0.7,
    tools: Optional[List[Dict[str, Any]]] = None,
) -> ConversationMessage:
    """Send one chat completion request and return the assistant message."""
    llm = create_llm(config, temperature=temperature)
    runnable: Any = llm
    if tools:
        runnable = llm.bind_tools(tools, tool_choice="auto")

    logger.debug(
        "LLM request: model=%s messages=%d tools=%d temp=%.1f",
        config.model, len(messages), len(tools or []), temperature,
    )

    response = await runnable.ainvoke(_to_langchain_messages(messages))
    message = _from_ai_message(response)

    logger.info(
        "LLM response: %d chars, %d tool calls, first 100: %s",
        len(message.content or ""), len(message.tool_calls), repr((message.content or "")[:100]),
    )
    return message


# ── Utility ───────────────────────────────────────────────


def _strip_thinking(text: str) -> str:
    """Remove <think>...</think> blocks some reasoning models emit."""
    text = re.sub(r'<think>.*?</think>\s*', '', text, flags=re.DOTALL)
    text = re.sub(r'<think>.*', '', text, flags=re.DOTALL)
    return text.strip()
