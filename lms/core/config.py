"""Process settings, read once from the environment at import.

    APP_ENV              dev | test | prod                 (dev)
    LOG_LEVEL            debug | info | warning | error    (info)
    LOG_JSON             boolean                           (false)
    PORT                 integer                           (8000)
    DATABASE_URL         postgresql+asyncpg://...  unset: in-memory store
    REDIS_URL            redis://...               unset: in-memory cache/queue
    PROGRESS_CACHE_TTL   seconds, > 0                      (300)
    CORS_ORIGINS         comma-separated origins   (http://localhost:5173)

Invalid values raise ValueError at startup rather than surfacing as odd
behaviour later.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, cast

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off", "")


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getenv_choice(name: str, default: str, choices: tuple[str, ...]) -> str:
    raw = _getenv(name, default).lower()
    if raw not in choices:
        raise ValueError(f"{name} must be {'|'.join(choices)} (got {raw!r})")
    return raw


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name, "true" if default else "false").lower()
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ValueError(f"{name} must be a boolean (got {raw!r})")


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    progress_cache_ttl: int = 300
    cors_origins: tuple[str, ...] = ("http://localhost:5173",)

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env = _getenv_choice("APP_ENV", "dev", ("dev", "test", "prod"))
    log_level = _getenv_choice(
        "LOG_LEVEL", "info", ("debug", "info", "warning", "error")
    )

    progress_cache_ttl = _getenv_int("PROGRESS_CACHE_TTL", 300)
    if progress_cache_ttl <= 0:
        raise ValueError(
            f"PROGRESS_CACHE_TTL must be positive (got {progress_cache_ttl})"
        )

    return Settings(
        app_env=cast(AppEnv, app_env),
        log_level=cast(LogLevel, log_level),
        log_json=_getenv_bool("LOG_JSON", False),
        port=_getenv_int("PORT", 8000),
        # Blank means unset: compose files often pass VAR= through.
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        progress_cache_ttl=progress_cache_ttl,
        cors_origins=tuple(
            o.strip()
            for o in _getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
            if o.strip()
        ),
    )


SETTINGS = load_settings()
