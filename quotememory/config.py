"""
Application configuration via environment variables.

Uses Pydantic BaseSettings to load and validate all config from env vars
or a .env.local file. Every setting has a default that lets the service
start locally against the in-memory store with no further configuration.
"""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Deployment environment selector."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StoreBackend(str, Enum):
    """Where review items, price history, quotes and reference data live."""

    MEMORY = "memory"
    SUPABASE = "supabase"


class Settings(BaseSettings):
    """
    Central configuration for the Sales Quote Memory service.

    Values are loaded from environment variables first, falling back
    to a `.env.local` file in the project root. Secrets should NEVER
    be committed; use `.env.example` as the template.
    """

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Environment ──────────────────────────────────────────────
    environment: Environment = Environment.DEVELOPMENT

    # ── Storage ──────────────────────────────────────────────────
    store_backend: StoreBackend = Field(default=StoreBackend.MEMORY, description="Persistence backend")
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_service_key: str = Field(default="", description="Supabase service-role key")
    store_timeout_seconds: float = Field(
        default=5.0, ge=0.5, le=60.0, description="Upper bound for any single data-store call"
    )

    # ── Review queue ─────────────────────────────────────────────
    review_confidence_threshold: float = Field(
        default=0.90, ge=0.0, le=1.0, description="Below this, items are flagged low-confidence (advisory)"
    )
    review_list_default_limit: int = Field(default=100, ge=1, le=1000)
    review_list_max_limit: int = Field(default=500, ge=1, le=5000)

    # ── Reference matching ───────────────────────────────────────
    material_match_threshold: float = Field(default=0.85, ge=0.0, le=1.0, description="Fuzzy material match cutoff")
    client_match_threshold: float = Field(default=0.80, ge=0.0, le=1.0, description="Fuzzy client match cutoff")

    # ── Price history ────────────────────────────────────────────
    price_history_default_limit: int = Field(default=20, ge=1, le=500)
    price_history_max_limit: int = Field(default=100, ge=1, le=1000)

    # ── Quotation defaults ───────────────────────────────────────
    default_currency: str = Field(default="INR")
    default_unit: str = Field(default="MT")
    default_delivery_terms: str = Field(default="From Ready Stock")

    # ── API ──────────────────────────────────────────────────────
    actor_header: str = Field(default="X-Actor-Id", description="Header carrying the verified subject id")
    cors_allow_origins: list[str] = Field(default_factory=lambda: ["*"])
    rate_limit_max: int = Field(default=100, ge=1, description="Requests per window per client IP")
    rate_limit_window_seconds: int = Field(default=60, ge=1)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO", description="Root log level")

    # ── Derived helpers ──────────────────────────────────────────

    @property
    def is_production(self) -> bool:
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        return self.environment == Environment.DEVELOPMENT


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Return cached Settings instance.

    Using lru_cache ensures we read env vars exactly once, and every
    module that calls ``get_settings()`` gets the same object.
    """
    return Settings()
