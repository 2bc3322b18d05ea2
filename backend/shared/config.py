"""
Central configuration for the Matchcenter services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class CacheBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class Settings(BaseSettings):
    """Root settings shared across all services."""

    model_config = SettingsConfigDict(
        env_prefix="MC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1
    cors_origins: list[str] = ["*"]

    # ── Cache ────────────────────────────────────────────────
    cache_backend: CacheBackend = CacheBackend.MEMORY
    cache_upcoming_ttl_s: float = Field(default=300.0, gt=0)
    cache_namespace: str = "mc:match"
    match_list_ttl_s: float = Field(default=60.0, gt=0)
    redis_url: RedisDsn = Field(default="redis://redis:6379/0")
    redis_max_connections: int = 20

    # ── CMS (Frontspace GraphQL) ─────────────────────────────
    cms_endpoint: str = "http://localhost:3000/api/graphql"
    cms_store_id: str = ""
    cms_api_key: str = ""
    cms_timeout_s: float = 8.0
    cms_news_post_type: str = "nyheter"

    # ── External match API (SMC) ─────────────────────────────
    smc_base_url: str = "https://smc-api.telenor.no"
    smc_secret: str = ""
    smc_match_timeout_s: float = 5.0
    smc_events_timeout_s: float = 10.0

    # ── Live-report feed (Sportomedia) ───────────────────────
    sportomedia_base_url: str = "https://api.sportomedia.se/v1"
    sportomedia_api_key: str = ""
    sportomedia_timeout_s: float = 10.0

    provider_max_retries: int = Field(default=2, ge=0, le=5)

    # ── Lifecycle ────────────────────────────────────────────
    finished_after_kickoff_h: float = 3.0

    # ── Polling ──────────────────────────────────────────────
    poll_live_interval_s: float = 15.0
    poll_upcoming_interval_s: float = 60.0
    poll_other_interval_s: float = 30.0
    poll_min_interval_s: float = 5.0
    poll_max_interval_s: float = 300.0
    poll_jitter_factor: float = 0.15
    poll_error_backoff_max_s: float = 120.0

    # ── WebSocket ────────────────────────────────────────────
    ws_heartbeat_interval_s: float = 15.0

    # ── Team page defaults ───────────────────────────────────
    team_league: str = "superettan"
    team_season: str = "2025"
    team_squad_code: str = "OIF"
    team_stats_id: str = "19"
    team_news_limit: int = 6

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @field_validator("poll_jitter_factor")
    @classmethod
    def clamp_jitter(cls, v: float) -> float:
        return min(max(v, 0.0), 0.5)

    @field_validator("smc_base_url", "sportomedia_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
