"""
Media Tracker AI — Pydantic Models

Shared data models used across the entire pipeline.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SearchProvider = Literal["google", "serper", "duckduckgo", "yandex"]
SearchType = Literal["text", "image"]

DEFAULT_STATUS = "To Watch"


# ── Media records ────────────────────────────────────────


class MediaType(str, Enum):
    BOOK = "Book"
    MOVIE = "Movie"
    TV_SERIES = "TV Series"
    COMIC = "Comic"
    SHORT_DRAMA = "Short Drama"
    MUSIC = "Music"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Any) -> "MediaType":
        """Lenient lookup: case and spacing do not matter, unknown → OTHER."""
        if isinstance(value, MediaType):
            return value
        key = "".join(str(value or "").split()).lower()
        for member in cls:
            if "".join(member.value.split()).lower() == key:
                return member
        return cls.OTHER


def placeholder_poster(media_type: Any = "Media") -> str:
    """Deterministic placeholder image URL keyed by media type."""
    label = media_type.value if isinstance(media_type, MediaType) else str(media_type or "Media")
    return f"https://placehold.co/600x900/1a1a1a/FFF?text={quote(label)}"


def is_placeholder(url: Optional[str]) -> bool:
    return not url or url.startswith("https://placehold.co/")


def parse_flag(value: Any) -> bool:
    """Model-supplied booleans arrive as bools, numbers or words."""
    if isinstance(value, str):
        return value.strip().lower() in {"true", "yes", "1", "ongoing"}
    return bool(value)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class MediaRecord(_CamelModel):
    """A media title as extracted from the model and enriched with a poster."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    title: str
    type: MediaType = MediaType.OTHER
    director_or_author: str = ""
    cast: List[str] = Field(default_factory=list, description="Main actors (max 5)")
    description: str = ""
    release_date: str = ""
    is_ongoing: bool = False
    latest_update_info: str = ""
    poster_url: Optional[str] = None
    rating: Optional[str] = Field(default=None, description="e.g. '8.5/10'")
    user_rating: float = 0
    status: str = DEFAULT_STATUS
    added_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @field_validator("type", mode="before")
    @classmethod
    def _lenient_type(cls, value: Any) -> MediaType:
        return MediaType.parse(value)

    @field_validator("cast", mode="before")
    @classmethod
    def _split_cast(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [name.strip() for name in value.split(",") if name.strip()]
        return [str(name) for name in value if name]

    @field_validator(
        "director_or_author", "description", "release_date", "latest_update_info",
        mode="before",
    )
    @classmethod
    def _as_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, list):
            return ", ".join(str(v) for v in value)
        return str(value)

    @field_validator("rating", mode="before")
    @classmethod
    def _rating_text(cls, value: Any) -> Optional[str]:
        return None if value is None else str(value)

    @field_validator("is_ongoing", mode="before")
    @classmethod
    def _bool_flag(cls, value: Any) -> bool:
        return parse_flag(value)

    @property
    def year(self) -> str:
        return self.release_date.split("-")[0].strip() if self.release_date else ""


class UpdateInfo(_CamelModel):
    """Latest-episode / chapter status for a record of the user's collection."""

    id: str
    latest_update_info: str = ""
    is_ongoing: bool = False


# ── Search ───────────────────────────────────────────────


class SearchResult(BaseModel):
    """Normalized search hit — every provider maps into this shape."""

    title: Optional[str] = None
    snippet: Optional[str] = None
    link: Optional[str] = None
    image: Optional[str] = None


class SearchConfig(BaseModel):
    """Provider selection and credentials for one search call."""

    model_config = ConfigDict(frozen=True)

    provider: SearchProvider = "duckduckgo"
    api_key: Optional[str] = None
    cx: Optional[str] = None
    user: Optional[str] = None
    search_type: SearchType = "text"

    def to_host_config(self) -> Dict[str, Any]:
        """Config dict in the naming the host shell's web_search expects."""
        return {
            "provider": self.provider,
            "api_key": self.api_key,
            "cx": self.cx,
            "user": self.user,
            "search_type": self.search_type,
        }


# ── Chat model ───────────────────────────────────────────


class ChatConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    base_url: str
    api_key: str = ""


class ToolCall(BaseModel):
    """A function call requested by the model."""

    id: str
    function_name: str
    arguments_json: str = "{}"

    @classmethod
    def from_wire(cls, raw: Dict[str, Any]) -> "ToolCall":
        function = raw.get("function") or {}
        arguments = function.get("arguments", "{}")
        if not isinstance(arguments, str):
            arguments = json.dumps(arguments, ensure_ascii=False)
        return cls(
            id=str(raw.get("id") or "fn"),
            function_name=str(function.get("name") or ""),
            arguments_json=arguments,
        )

    def to_wire(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.function_name, "arguments": self.arguments_json},
        }


class ConversationMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = ""
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = Field(default_factory=list)
    name: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        """OpenAI chat-completions message dict."""
        msg: Dict[str, Any] = {"role": self.role, "content": self.content or ""}
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        if self.name:
            msg["name"] = self.name
        return msg


# ── API Contract ─────────────────────────────────────────


class SearchRequest(BaseModel):
    query: str = Field(..., max_length=500)
    type: str = Field(default="All", description="A MediaType value or 'All'")


class UpdatesRequest(BaseModel):
    items: List[MediaRecord] = Field(default_factory=list)
