"""Engine configuration with environment-specific profiles.

Supports dev, staging, production and test environments via APP_ENV.
All values can be overridden by environment variables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


@dataclass(frozen=True)
class Settings:
    """Immutable engine settings resolved from environment."""

    database_url: str
    app_env: str = "dev"
    log_level: str = "INFO"

    # Workflow cache
    cache_backend: str = "memory"
    redis_url: str = "redis://localhost:6379/0"
    cache_prefix: str = "ruckplan"

    # Generation
    workflow_validity_weeks: int = 4
    generation_window_weeks: int = 4
    scheduler_max_days: int = 100
    templates_path: Optional[str] = None

    # Regeneration thresholds
    regeneration_consistency_min: float = 0.6
    regeneration_trend_min: float = -0.2

    # Rate limiting
    rate_limit_enabled: bool = True
    rate_limit_storage_uri: str = "memory://"
    regenerate_rate_limit: str = "10/minute"

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"


# -- Environment profiles --

_ENV_PROFILES: dict[str, dict] = {
    "dev": {
        "log_level": "DEBUG",
        "cache_backend": "memory",
    },
    "test": {
        "log_level": "WARNING",
        "cache_backend": "memory",
        "rate_limit_enabled": False,
    },
    "staging": {
        "log_level": "INFO",
        "cache_backend": "redis",
    },
    "production": {
        "log_level": "WARNING",
        "cache_backend": "redis",
        "regenerate_rate_limit": "5/minute",
    },
}


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_database_url() -> str:
    """Resolve database URL from env var or a local SQLite default."""
    env_url = os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return "sqlite:///./ruckplan.db"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build Settings by merging environment profile with env-var overrides."""
    app_env = os.getenv("APP_ENV", "dev")
    profile = _ENV_PROFILES.get(app_env, _ENV_PROFILES["dev"])

    return Settings(
        database_url=get_database_url(),
        app_env=app_env,
        log_level=os.getenv("LOG_LEVEL", profile.get("log_level", "INFO")),
        cache_backend=os.getenv("RUCKPLAN_CACHE_BACKEND", profile.get("cache_backend", "memory")),
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        cache_prefix=os.getenv("RUCKPLAN_CACHE_PREFIX", "ruckplan"),
        workflow_validity_weeks=int(os.getenv("RUCKPLAN_VALIDITY_WEEKS", "4")),
        generation_window_weeks=int(os.getenv("RUCKPLAN_WINDOW_WEEKS", "4")),
        scheduler_max_days=int(os.getenv("RUCKPLAN_SCHEDULER_MAX_DAYS", "100")),
        templates_path=os.getenv("RUCKPLAN_TEMPLATES_PATH") or None,
        regeneration_consistency_min=float(os.getenv("RUCKPLAN_REGEN_CONSISTENCY_MIN", "0.6")),
        regeneration_trend_min=float(os.getenv("RUCKPLAN_REGEN_TREND_MIN", "-0.2")),
        rate_limit_enabled=_env_bool("RATE_LIMIT_ENABLED", profile.get("rate_limit_enabled", True)),
        rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
        regenerate_rate_limit=os.getenv("REGENERATE_RATE_LIMIT", profile.get("regenerate_rate_limit", "10/minute")),
    )
