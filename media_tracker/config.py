"""
Media Tracker AI — Application Settings

Design patterns:
  - Singleton: single Settings instance shared everywhere
  - Configuration Object: centralizes all env-based config
  - Snapshot: every pipeline call works on an immutable SettingsSnapshot
    captured at call start, never on the live Settings object
"""

from __future__ import annotations

import re
from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from media_tracker.credentials import reveal
from media_tracker.models import ChatConfig, SearchConfig, SearchProvider, SearchType

DEFAULT_BASE_URL = "https://api.moonshot.cn/v1"

DEFAULT_SYSTEM_PROMPT = """\
You are a helpful media encyclopedia and curator.
When searching or recommending, you must return a VALID JSON array of objects.
Do not wrap the JSON in markdown code blocks. Just return the raw JSON array.
Each object must have the following fields:
- title: string
- directorOrAuthor: string
- cast: string[] (max 5 main actors, empty for books if not applicable)
- description: string (approx 150 words, covering theme and background)
- releaseDate: string (YYYY-MM-DD preferred, or YYYY)
- type: one of ["Book", "Movie", "TV Series", "Comic", "Short Drama", "Music", "Other"]
- isOngoing: boolean
- latestUpdateInfo: string (empty if completed)
- rating: string (e.g. "8.5/10")

Ensure data is accurate."""


class Settings(BaseSettings):
    """Central configuration sourced from environment / .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # ── App ───────────────────────────────────────────────
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "info"

    # ── Runtime (direct HTTP vs. host shell RPC) ──────────
    runtime_mode: Literal["direct", "host"] = "direct"
    host_bridge_url: Optional[str] = None

    # ── Chat model ────────────────────────────────────────
    llm_base_url: str = DEFAULT_BASE_URL
    llm_model: str = "kimi-latest"
    llm_api_key: str = ""
    # Development convenience: picked up when llm_api_key is empty
    fallback_llm_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("MOONSHOT_API_KEY", "OPENAI_API_KEY"),
    )
    model_max_concurrent: int = 2
    model_max_retries: int = 3
    model_retry_base_delay: float = 2.0
    max_turns: int = 5

    # ── Prompts ───────────────────────────────────────────
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    trending_prompt: str = ""

    # ── Web search ────────────────────────────────────────
    enable_search: bool = True
    search_provider: SearchProvider = "google"
    google_search_api_key: str = ""
    google_search_cx: str = ""
    serper_api_key: str = ""
    yandex_search_api_key: str = ""
    yandex_search_login: str = ""
    search_cache_ttl: float = 600            # router-level cache
    search_results_cache_ttl: float = 7200   # facade-level cache for search()

    # ── Posters ───────────────────────────────────────────
    omdb_api_key: str = ""                   # https://www.omdbapi.com/apikey.aspx
    poster_workers: int = 3
    poster_search_timeout: float = 5.0
    poster_metadata_timeout: float = 1.0

    # ── Secrets ───────────────────────────────────────────
    credential_secret: Optional[str] = None


class SettingsSnapshot(BaseModel):
    """
    Immutable copy of the settings a single pipeline call runs with.

    Credentials stay in their stored (possibly encrypted) form and are only
    revealed when a ChatConfig / SearchConfig is built for the call.
    """

    model_config = ConfigDict(frozen=True, protected_namespaces=())

    runtime_mode: Literal["direct", "host"] = "direct"
    llm_base_url: str = DEFAULT_BASE_URL
    llm_model: str = "kimi-latest"
    llm_api_key: str = ""
    fallback_llm_api_key: Optional[str] = None
    model_max_retries: int = 3
    model_retry_base_delay: float = 2.0
    max_turns: int = 5
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    trending_prompt: str = ""
    enable_search: bool = True
    search_provider: SearchProvider = "google"
    google_search_api_key: str = ""
    google_search_cx: str = ""
    serper_api_key: str = ""
    yandex_search_api_key: str = ""
    yandex_search_login: str = ""
    search_cache_ttl: float = 600
    search_results_cache_ttl: float = 7200
    omdb_api_key: str = ""
    poster_workers: int = 3
    poster_search_timeout: float = 5.0
    poster_metadata_timeout: float = 1.0
    credential_secret: Optional[str] = None

    @classmethod
    def capture(cls, source: Optional[Settings] = None) -> "SettingsSnapshot":
        """Copy the current process-wide settings into a frozen snapshot."""
        source = source or settings
        data = source.model_dump(include=set(cls.model_fields))
        return cls(**data)

    # ── Per-call views ────────────────────────────────────

    def chat_config(self) -> ChatConfig:
        api_key = reveal(self.llm_api_key, self.credential_secret)
        if not api_key and self.fallback_llm_api_key:
            api_key = reveal(self.fallback_llm_api_key, self.credential_secret)
        return ChatConfig(
            model=self.llm_model or "kimi-latest",
            base_url=clean_base_url(self.llm_base_url),
            api_key=api_key,
        )

    def search_config(self, search_type: SearchType = "text") -> SearchConfig:
        provider = self.search_provider
        raw_key = {
            "google": self.google_search_api_key,
            "serper": self.serper_api_key,
            "yandex": self.yandex_search_api_key,
        }.get(provider, "")
        return SearchConfig(
            provider=provider,
            api_key=reveal(raw_key, self.credential_secret) or None,
            cx=reveal(self.google_search_cx, None) or None,
            user=reveal(self.yandex_search_login, None) or None,
            search_type=search_type,
        )

    def omdb_key(self) -> str:
        return reveal(self.omdb_api_key, self.credential_secret)


def clean_base_url(raw: Optional[str]) -> str:
    """Strip stray quotes, parentheses and whitespace pasted into the base URL."""
    url = (raw or "").strip()
    url = re.sub(r"[\s)]+$", "", url)
    url = url.replace("(", "").replace(")", "")
    url = url.strip('"').strip("'")
    return url or DEFAULT_BASE_URL


# Singleton – import this everywhere
settings = Settings()
