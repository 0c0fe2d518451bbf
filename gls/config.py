"""gls configuration.

Settings are read from the environment once and passed around as an
immutable value.
"""
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from gls.errors import ConfigError

DEFAULT_BASE_URL = "https://gitlab.com"
DEFAULT_DB_PATH = "~/gls.db"
DEFAULT_MAX_CONCURRENCY = 8
DEFAULT_STALE_DAYS = 1
DEFAULT_MIN_REFRESH_MINUTES = 10
DEFAULT_PER_PAGE = 100  # GitLab's max page size
DEFAULT_RETRY_ATTEMPTS = 3

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    """Positive integer from the environment; anything else falls back to default."""
    value = env.get(name)
    if value is None:
        return default
    try:
        parsed = int(value.strip())
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _env_str(env: Mapping[str, str], name: str, default: str | None = None) -> str | None:
    value = (env.get(name) or "").strip()
    return value or default


def split_csv(raw: str | None) -> list[str]:
    return [item.strip() for item in (raw or "").split(",") if item.strip()]


def expand_path(path: str) -> str:
    return os.path.expanduser(path) if path else path


@dataclass(frozen=True)
class Settings:
    token: str
    base_url: str = DEFAULT_BASE_URL
    paths: tuple[str, ...] = ()
    db_path: str = field(default_factory=lambda: expand_path(DEFAULT_DB_PATH))
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    stale_days: int = DEFAULT_STALE_DAYS
    min_refresh_minutes: int = DEFAULT_MIN_REFRESH_MINUTES
    per_page: int = DEFAULT_PER_PAGE
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    log_info: bool = False
    debug: bool = False
    clone_dir: str | None = None
    post_clone_action: str | None = None

    # Observability
    otel_enabled: bool = False
    otel_endpoint: str = "http://localhost:4318"
    otel_service_name: str = "gls"
    prom_port: int = 0

    @property
    def membership_mode(self) -> bool:
        return not self.paths

    def with_overrides(self, **changes: Any) -> Settings:
        return replace(self, **changes)


def load_settings(environ: Mapping[str, str] | None = None, **overrides: Any) -> Settings:
    """Build Settings from the environment. Raises ConfigError before any I/O."""
    env = os.environ if environ is None else environ

    token = _env_str(env, "GITLAB_TOKEN", "")
    if not token:
        raise ConfigError("Missing GITLAB_TOKEN env value. Set it in .env or environment.")

    base_url = (_env_str(env, "GITLAB_BASE_URL", DEFAULT_BASE_URL) or DEFAULT_BASE_URL).rstrip("/")
    if not base_url.startswith(("http://", "https://")):
        raise ConfigError(f"GITLAB_BASE_URL must be an http(s) URL, got {base_url!r}")

    clone_dir = _env_str(env, "GITLAB_CLONE_DIRECTORY")

    settings = Settings(
        token=token,
        base_url=base_url,
        paths=tuple(split_csv(env.get("GITLAB_PATHS"))),
        db_path=expand_path(_env_str(env, "GLS_DB_PATH", DEFAULT_DB_PATH) or DEFAULT_DB_PATH),
        max_concurrency=_env_int(env, "GLS_MAX_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
        stale_days=_env_int(env, "GLS_STALE_DAYS", DEFAULT_STALE_DAYS),
        min_refresh_minutes=_env_int(env, "GLS_REFRESH_MIN_INTERVAL_MINUTES", DEFAULT_MIN_REFRESH_MINUTES),
        per_page=_env_int(env, "GLS_PER_PAGE", DEFAULT_PER_PAGE),
        retry_attempts=_env_int(env, "GLS_RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS),
        log_info=_env_bool(env, "GLS_LOG", False),
        debug=_env_bool(env, "GLS_DEBUG", False),
        clone_dir=expand_path(clone_dir) if clone_dir else None,
        post_clone_action=_env_str(env, "GLS_POST_CLONE_ACTION"),
        otel_enabled=_env_bool(env, "GLS_OTEL_ENABLED", False),
        otel_endpoint=_env_str(env, "GLS_OTEL_ENDPOINT", "http://localhost:4318") or "",
        otel_service_name=_env_str(env, "GLS_OTEL_SERVICE_NAME", "gls") or "gls",
        prom_port=_env_int(env, "GLS_PROM_PORT", 0),
    )
    if overrides:
        settings = settings.with_overrides(**overrides)
    return settings
