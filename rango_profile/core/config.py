"""
Configuration helpers for the profile backend.

Routers/services read a frozen Settings object instead of fetching os.environ
directly.
"""

from dataclasses import dataclass
from functools import lru_cache
import os

WRITE_POLICY_OPTIMISTIC = "optimistic"
WRITE_POLICY_OWNER_LOCK = "owner_lock"
WRITE_POLICIES = {WRITE_POLICY_OPTIMISTIC, WRITE_POLICY_OWNER_LOCK}

CLEANUP_ATOMIC = "atomic"
CLEANUP_BEST_EFFORT = "best_effort"
CLEANUP_MODES = {CLEANUP_ATOMIC, CLEANUP_BEST_EFFORT}


@dataclass(frozen=True)
class Settings:
    """Typed view of environment variables."""

    app_env: str
    database_url: str
    log_level: str
    session_ttl_seconds: int
    enforcer_max_attempts: int
    store_retry_attempts: int
    retry_backoff_seconds: float
    retry_backoff_max_seconds: float
    write_policy: str
    sibling_cleanup_mode: str


@lru_cache
def get_settings() -> Settings:
    """Read the current environment and build a Settings instance."""
    def _int(value: str | None, default: int = 0, minimum: int = 0) -> int:
        try:
            parsed = int(value)
        except (TypeError, ValueError):
            return default
        return parsed if parsed >= minimum else default

    def _float(value: str | None, default: float = 0.0) -> float:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return default
        return parsed if parsed >= 0 else default

    def _choice(value: str | None, allowed: set[str], default: str) -> str:
        candidate = (value or "").strip().lower()
        return candidate if candidate in allowed else default

    return Settings(
        app_env=(os.getenv("APP_ENV") or "dev").lower(),
        database_url=os.getenv("DATABASE_URL", ""),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
        session_ttl_seconds=_int(os.getenv("SESSION_TTL_SECONDS", "86400"), 86400, minimum=1),
        enforcer_max_attempts=_int(os.getenv("ENFORCER_MAX_ATTEMPTS", "3"), 3, minimum=1),
        store_retry_attempts=_int(os.getenv("STORE_RETRY_ATTEMPTS", "3"), 3, minimum=1),
        retry_backoff_seconds=_float(os.getenv("RETRY_BACKOFF_SECONDS", "0.05"), 0.05),
        retry_backoff_max_seconds=_float(os.getenv("RETRY_BACKOFF_MAX_SECONDS", "1.0"), 1.0),
        write_policy=_choice(os.getenv("DEFAULT_WRITE_POLICY"), WRITE_POLICIES, WRITE_POLICY_OPTIMISTIC),
        sibling_cleanup_mode=_choice(os.getenv("SIBLING_CLEANUP_MODE"), CLEANUP_MODES, CLEANUP_ATOMIC),
    )
