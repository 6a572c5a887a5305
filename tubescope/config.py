"""Application settings for tubescope.

Covers the upstream innertube client identity, HTTP behaviour, chat
provider credentials and the on-disk title cache.

Environment Variables:
    TUBESCOPE_HTTP_TIMEOUT: Seconds before an upstream request is abandoned (default: 20)
    TUBESCOPE_INNERTUBE_CLIENT_VERSION: Android client version to impersonate
    TUBESCOPE_TITLE_CACHE_DIRECTORY: Where timeline titles are cached
    TUBESCOPE_DEFAULT_PROVIDER: Chat provider id (default: anthropic)
    TUBESCOPE_DEFAULT_MODEL: Chat model id (default: claude-sonnet-4-6)
    TUBESCOPE_<PROVIDER>_API_KEY: API key per provider
    TUBESCOPE_SEMANTIC_SEARCH_ENABLED: Embed chunks on load (default: true)
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_default_title_cache_directory() -> str:
    """Get XDG-compliant default directory for cached timeline titles."""
    xdg_data_home = os.environ.get("XDG_DATA_HOME")
    if xdg_data_home:
        base_dir = Path(xdg_data_home)
    else:
        base_dir = Path.home() / ".local" / "share"

    return str(base_dir / "tubescope" / "titles")


class Settings(BaseSettings):
    """Runtime settings loaded from the environment and an optional .env file."""

    model_config = SettingsConfigDict(
        env_prefix="TUBESCOPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream HTTP
    http_timeout: float = Field(default=20.0, gt=0, le=120)
    accept_language: str = "en-US,en;q=0.9"

    # Innertube mobile client identity
    innertube_url: str = "https://www.youtube.com/youtubei/v1/player?prettyPrint=false"
    innertube_client_name: str = "ANDROID"
    innertube_client_name_id: str = "3"
    innertube_client_version: str = "19.09.37"
    innertube_android_sdk_version: int = 30
    innertube_user_agent: str = (
        "com.google.android.youtube/19.09.37 (Linux; U; Android 11) gzip"
    )
    innertube_hl: str = "en"
    innertube_gl: str = "US"
    watch_url: str = "https://www.youtube.com/watch"

    # Timeline title cache
    title_cache_directory: str = Field(
        default_factory=_get_default_title_cache_directory,
    )

    # Chat providers
    default_provider: str = "anthropic"
    default_model: str = "claude-sonnet-4-6"
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    google_api_key: str = ""
    groq_api_key: str = ""
    mistral_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"

    semantic_search_enabled: bool = True

    @field_validator("title_cache_directory")
    @classmethod
    def expand_title_cache_directory(cls, value: str) -> str:
        """Expand ~ in the cache directory path."""
        return str(Path(value).expanduser())

    def api_key_for(self, provider_id: str) -> str:
        """Return the configured API key for a provider id, or an empty string."""
        return str(getattr(self, f"{provider_id}_api_key", "") or "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Falls back to environment variables only when the .env file cannot be read.
    """
    try:
        return Settings()
    except OSError:
        return Settings(_env_file=None)  # type: ignore[call-arg]
