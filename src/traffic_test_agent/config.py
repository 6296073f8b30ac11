"""Settings for a generation run, read from YAML and the environment."""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel

from traffic_test_agent.ratelimit import DEFAULT_LIMIT, DEFAULT_LIMITS, RateLimit, RateLimiter

ENV_PREFIX = "TTA_"
_ENV_FIELDS = ("backend", "model", "dialect", "max_retries", "batch_size", "request_timeout")


class RateLimitSettings(BaseModel):
    max_requests: int
    window: float = 60.0


class Settings(BaseModel):
    backend: str = "openai"
    model: str | None = None
    dialect: str = "jest"
    batch_size: int = 5
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_cap: float = 10.0
    request_timeout: float = 60.0
    max_wait_sleep: float = 5.0
    rate_limits: dict[str, RateLimitSettings] = {}

    def rate_limiter(self) -> RateLimiter:
        limits = dict(DEFAULT_LIMITS)
        default = DEFAULT_LIMIT
        for backend_id, limit in self.rate_limits.items():
            if backend_id == "default":
                default = RateLimit(limit.max_requests, limit.window)
            else:
                limits[backend_id] = RateLimit(limit.max_requests, limit.window)
        return RateLimiter(limits=limits, default=default, max_sleep=self.max_wait_sleep)


def load_settings(path: Path | None = None) -> Settings:
    """Load settings from an optional YAML file, then apply TTA_* overrides."""
    data = {}
    if path is not None:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path}: settings must be a YAML mapping")

    for name in _ENV_FIELDS:
        value = os.getenv(ENV_PREFIX + name.upper())
        if value:
            data[name] = value

    return Settings(**data)
