"""
Central configuration for the fantasy live services.
Every value can be overridden from the environment (FL_ prefix) or a .env file.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class Settings(BaseSettings):
    """Settings for the scheduler and the scoring library."""

    model_config = SettingsConfigDict(
        env_prefix="FL_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = Field(default="auto", description="console | json | auto (console in dev)")
    instance_id: str = Field(default="", description="Unique pod/container ID for the detector lease")

    # ── Redis ────────────────────────────────────────────────
    redis_url: RedisDsn = Field(default="redis://redis:6379/0")
    redis_max_connections: int = 50

    # ── Upstream ─────────────────────────────────────────────
    upstream_base_url: str = "https://fantasy.premierleague.com/api"
    upstream_user_agent: str = "FPL-Companion/1.0"
    # Fixed by contract with the upstream; there is no inline retry.
    upstream_timeout_s: float = 10.0

    # ── News change detector ─────────────────────────────────
    detector_interval_s: float = 900.0
    detector_retention_days: int = 7
    detector_lease_enabled: bool = False
    detector_lease_ttl_s: int = 120

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)

    @property
    def detector_retention_ms(self) -> int:
        return self.detector_retention_days * 24 * 60 * 60 * 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded once."""
    return Settings()
