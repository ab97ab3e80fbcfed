"""Application configuration loaded from environment variables.

Uses ``pydantic-settings`` for automatic env-var loading, type coercion,
and ``.env`` file support.  Validates production-required settings on
import -- fails fast if they are missing outside of tests.
"""

import sys

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Required var names -- checked after instantiation (not during), and only
# when ENVIRONMENT=production.  BYOK users can run without a server key in
# development.
# ---------------------------------------------------------------------------
_REQUIRED_IN_PRODUCTION: list[str] = [
    "ANTHROPIC_API_KEY",
]


class Settings(BaseSettings):
    """Application settings -- sourced from environment / ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    ENVIRONMENT: str = "development"  # "development" | "production"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""

    # Comma-separated list of allowed origins.  Ignored in development,
    # where every origin is allowed (the Expo dev client has no fixed host).
    CORS_ORIGINS: str = ""

    # Server-side LLM key.  Requests may bring their own key instead.
    ANTHROPIC_API_KEY: str = ""

    # -------------------------------------------------------------------------
    # Model tiers -- the mobile client only ever sends "haiku" | "sonnet" |
    # "opus"; the concrete model IDs live here so they can be bumped without
    # an app release.
    # -------------------------------------------------------------------------
    LLM_HAIKU_MODEL: str = "claude-3-5-haiku-20241022"
    LLM_SONNET_MODEL: str = "claude-sonnet-4-20250514"
    LLM_OPUS_MODEL: str = "claude-opus-4-5-20251101"
    DEFAULT_CHAT_MODEL: str = "sonnet"
    ANALYSIS_MODEL: str = "haiku"  # project analysis is always the cheap tier

    CHAT_MAX_TOKENS: int = Field(default=4096, ge=1)
    ANALYSIS_MAX_TOKENS: int = Field(default=1024, ge=1)
    CONTEXT_MAX_TOKENS: int = Field(default=2048, ge=1)

    # Agentic loop bounds
    CHAT_MAX_TOOL_ITERATIONS: int = Field(default=5, ge=1)
    TOOL_MAX_FILE_CHARS: int = 100_000
    SEARCH_RESULT_LIMIT: int = Field(default=50, ge=1)

    # Upstream LLM transport
    LLM_TIMEOUT_SECONDS: float = 120.0
    LLM_MAX_RETRIES: int = Field(default=2, ge=0)
    LLM_RETRY_MAX_WAIT: float = 10.0

    # Per-IP chat throttle
    CHAT_RATE_LIMIT: int = 30
    CHAT_RATE_WINDOW_SECONDS: int = 60

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def cors_origins(self) -> list[str]:
        """Parsed ``CORS_ORIGINS`` (empty entries dropped)."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]


settings = Settings()

# ---------------------------------------------------------------------------
# Model tier resolution
# ---------------------------------------------------------------------------
MODEL_TIERS: tuple[str, ...] = ("haiku", "sonnet", "opus")


def resolve_model(name: str | None) -> str:
    """Return the model ID for a friendly tier name.

    Unknown or missing names fall back to ``DEFAULT_CHAT_MODEL`` (and to
    sonnet if that is misconfigured too).
    """
    tier_map = {
        "haiku": settings.LLM_HAIKU_MODEL,
        "sonnet": settings.LLM_SONNET_MODEL,
        "opus": settings.LLM_OPUS_MODEL,
    }
    if name in tier_map:
        return tier_map[name]
    return tier_map.get(settings.DEFAULT_CHAT_MODEL, settings.LLM_SONNET_MODEL)


# Validate at import time -- but only when NOT running under pytest.
if "pytest" not in sys.modules and settings.is_production:
    _missing = [v for v in _REQUIRED_IN_PRODUCTION if not getattr(settings, v)]
    if _missing:
        print(
            f"[config] FATAL: missing required environment variables: "
            f"{', '.join(_missing)}",
            file=sys.stderr,
        )
        sys.exit(1)
