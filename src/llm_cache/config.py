"""
Environment-driven settings.

Every value has a default; malformed numbers fall back to it rather than
failing startup.
"""
import os
from dataclasses import dataclass, field
from typing import Dict, Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class CacheSettings:
    max_size: int
    default_ttl: float


DEFAULT_CACHES: Dict[str, CacheSettings] = {
    # Consultation answers are generic, keep them longer
    "consultation": CacheSettings(max_size=500, default_ttl=30 * 60),
    "analysis": CacheSettings(max_size=200, default_ttl=60 * 60),
    # Training is dynamic
    "technique": CacheSettings(max_size=300, default_ttl=10 * 60),
}


@dataclass(frozen=True)
class RetrySettings:
    timeout: float = 30.0
    analysis_timeout: float = 60.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0


@dataclass(frozen=True)
class RateLimitSettings:
    requests: int = 10
    window: float = 60.0


@dataclass(frozen=True)
class Settings:
    caches: Dict[str, CacheSettings] = field(default_factory=lambda: dict(DEFAULT_CACHES))
    cleanup_interval: float = 10 * 60
    retry: RetrySettings = field(default_factory=RetrySettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    port: int = 8080
    log_level: str = "info"


def _load_cache(name: str, defaults: CacheSettings) -> CacheSettings:
    prefix = f"LLM_CACHE_{name.upper()}"
    return CacheSettings(
        max_size=_env_int(f"{prefix}_MAX_SIZE", defaults.max_size),
        default_ttl=_env_float(f"{prefix}_TTL_S", defaults.default_ttl),
    )


def load_settings(cache_defaults: Optional[Dict[str, CacheSettings]] = None) -> Settings:
    cache_defaults = DEFAULT_CACHES if cache_defaults is None else cache_defaults
    return Settings(
        caches={name: _load_cache(name, d) for name, d in cache_defaults.items()},
        cleanup_interval=_env_float("LLM_CACHE_CLEANUP_INTERVAL_S", 10 * 60),
        retry=RetrySettings(
            timeout=_env_float("LLM_TIMEOUT_S", 30.0),
            analysis_timeout=_env_float("LLM_ANALYSIS_TIMEOUT_S", 60.0),
            max_attempts=_env_int("LLM_MAX_ATTEMPTS", 3),
            backoff_base=_env_float("LLM_BACKOFF_BASE_S", 1.0),
            backoff_max=_env_float("LLM_BACKOFF_MAX_S", 10.0),
        ),
        rate_limit=RateLimitSettings(
            requests=_env_int("RATE_LIMIT_REQUESTS", 10),
            window=_env_float("RATE_LIMIT_WINDOW_S", 60.0),
        ),
        port=_env_int("PORT", 8080),
        log_level=os.getenv("LOG_LEVEL", "info"),
    )
